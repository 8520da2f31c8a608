"""
Cluster inventory: listing, lookup, villa search and villa statistics.

Villas live inside their cluster document; a villa id is only unique within
its cluster, so every villa lookup goes through the owning cluster first.
"""
import logging
import re
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document
from errors import BadRequest, Conflict, NotFound
from schemas import VILLA_STATUSES, Cluster as ClusterSchema, status_key

logger = logging.getLogger(__name__)

CLUSTER_NOT_FOUND = "The requested cluster does not exist or is inactive"


def villa_stats(cluster: dict) -> dict:
    stats = {"total": len(cluster.get("villas", []))}
    stats.update({status_key(s): 0 for s in VILLA_STATUSES})
    for villa in cluster.get("villas", []):
        key = status_key(villa.get("status", ""))
        if key in stats:
            stats[key] += 1
    return stats


def find_villa(cluster: dict, villa_id: str) -> Optional[dict]:
    for villa in cluster.get("villas", []):
        if villa.get("id") == villa_id:
            return villa
    return None


def list_clusters(db: Database, status: Optional[str] = None, search: Optional[str] = None) -> list:
    query = {"isActive": True}
    if status:
        query["villas.status"] = status
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"clusterName": {"$regex": pattern, "$options": "i"}},
            {"clusterId": {"$regex": pattern, "$options": "i"}},
        ]
    clusters = list(db["cluster"].find(query).sort("createdAt", DESCENDING))
    logger.info("Retrieved %d clusters", len(clusters))
    return clusters


def get_cluster(db: Database, cluster_id: str) -> dict:
    cluster = db["cluster"].find_one({"clusterId": cluster_id, "isActive": True})
    if not cluster:
        raise NotFound(CLUSTER_NOT_FOUND, error="Cluster not found")
    return cluster


def search_villa(db: Database, combined_id: str) -> dict:
    cluster_id, _, villa_id = combined_id.partition("_")
    if not cluster_id or not villa_id:
        raise BadRequest("Use format: clusterId_villaId", error="Invalid format")

    cluster = get_cluster(db, cluster_id)
    villa = find_villa(cluster, villa_id)
    if villa is None:
        raise NotFound("The requested villa does not exist in this cluster", error="Villa not found")

    logger.info("Villa searched: %s", combined_id)
    return {
        "cluster": {"clusterId": cluster["clusterId"], "clusterName": cluster["clusterName"]},
        "villa": villa,
    }


def cluster_stats(db: Database) -> dict:
    rows = {}
    for c in db["cluster"].find({"isActive": True}, {"clusterId": 1, "clusterName": 1}).sort("createdAt", DESCENDING):
        rows[c["clusterId"]] = {
            "clusterId": c["clusterId"],
            "clusterName": c["clusterName"],
            "villaCount": 0,
            "availableVillas": 0,
            "soldVillas": 0,
            "underConstructionVillas": 0,
        }

    counts = defaultdict(int)
    pipeline = [
        {"$match": {"isActive": True}},
        {"$unwind": "$villas"},
        {"$group": {
            "_id": {"clusterId": "$clusterId", "status": "$villas.status"},
            "count": {"$sum": 1},
        }},
    ]
    for group in db["cluster"].aggregate(pipeline):
        counts[(group["_id"]["clusterId"], group["_id"].get("status"))] += group["count"]

    for (cluster_id, status), count in counts.items():
        row = rows.get(cluster_id)
        if row is None:
            continue
        row["villaCount"] += count
        if status in VILLA_STATUSES:
            row[status_key(status) + "Villas"] += count

    totals = {"totalVillas": 0, "totalAvailable": 0, "totalSold": 0, "totalUnderConstruction": 0}
    for row in rows.values():
        totals["totalVillas"] += row["villaCount"]
        totals["totalAvailable"] += row["availableVillas"]
        totals["totalSold"] += row["soldVillas"]
        totals["totalUnderConstruction"] += row["underConstructionVillas"]

    logger.info("Cluster statistics retrieved")
    return {"clusters": list(rows.values()), "totals": totals}


def create_cluster(db: Database, data: dict, actor: Optional[dict] = None) -> dict:
    cluster = ClusterSchema.model_validate(data)
    if db["cluster"].find_one({"clusterId": cluster.cluster_id}):
        raise Conflict("A cluster with this ID already exists", error="Cluster ID already exists")
    try:
        doc = create_document(db, "cluster", cluster)
    except DuplicateKeyError:
        raise Conflict("A cluster with this ID already exists", error="Cluster ID already exists")

    logger.info("New cluster created: %s by user: %s", doc["clusterId"], actor and actor.get("email"))
    return doc


def update_cluster(db: Database, cluster_id: str, data: dict, actor: Optional[dict] = None) -> dict:
    if data.get("clusterId", cluster_id) != cluster_id:
        raise BadRequest("Cluster ID cannot be changed", error="Invalid request")

    cluster = ClusterSchema.model_validate({**data, "clusterId": cluster_id})
    update = cluster.model_dump(by_alias=True, exclude={"is_active"})
    update["updatedAt"] = datetime.now(timezone.utc)

    doc = db["cluster"].find_one_and_update(
        {"clusterId": cluster_id, "isActive": True},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound(CLUSTER_NOT_FOUND, error="Cluster not found")

    logger.info("Cluster updated: %s by user: %s", cluster_id, actor and actor.get("email"))
    return doc


def delete_cluster(db: Database, cluster_id: str, actor: Optional[dict] = None) -> None:
    """Soft delete: the cluster is hidden but kept in storage."""
    doc = db["cluster"].find_one_and_update(
        {"clusterId": cluster_id, "isActive": True},
        {"$set": {"isActive": False, "updatedAt": datetime.now(timezone.utc)}},
    )
    if not doc:
        raise NotFound("The requested cluster does not exist or is already deleted", error="Cluster not found")
    logger.info("Cluster deleted: %s by user: %s", cluster_id, actor and actor.get("email"))

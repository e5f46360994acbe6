# dropline/repos/mongo.py
from typing import Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

# never leak Mongo's own _id out of the store
_PROJECTION = {"_id": False}


class MongoOrderStore:
    """
    Orders collection on MongoDB.

    conditional_update is a single find_one_and_update: the filter carries the
    whole predicate, so the server evaluates and writes atomically on the
    document. This holds across any number of coordinator processes.
    """

    name = "mongo"

    def __init__(self, db: AsyncIOMotorDatabase, collection: str = "orders"):
        self.db = db
        self.col = db[collection]

    async def ensure_indexes(self) -> None:
        existing = [ix["name"] async for ix in self.col.list_indexes()]

        async def ensure(keys, name: str, **kwargs):
            if name not in existing:
                await self.col.create_index(keys, name=name, **kwargs)

        await ensure([("order_id", ASCENDING)], "order_id_1", unique=True)
        await ensure([("status", ASCENDING)], "status_1")
        await ensure([("customer_id", ASCENDING)], "customer_id_1")
        await ensure([("assigned_partner", ASCENDING)], "assigned_partner_1")
        await ensure([("timestamps.placed", DESCENDING)], "placed_at_-1")

    async def insert_order(self, doc: dict) -> dict:
        doc = dict(doc)
        await self.col.insert_one(dict(doc))
        return doc

    async def get_order(self, order_id: str) -> Optional[dict]:
        return await self.col.find_one({"order_id": order_id}, _PROJECTION)

    async def conditional_update(self, order_id: str, expected: Dict[str, Any],
                                 changes: Dict[str, Any]) -> Optional[dict]:
        # {"field": None} in a Mongo filter matches both null and missing,
        # which is exactly "unset" for assigned_partner / timestamps.<status>
        return await self.col.find_one_and_update(
            {"order_id": order_id, **expected},
            {"$set": changes},
            projection=_PROJECTION,
            return_document=ReturnDocument.AFTER,
        )

    async def list_orders(self, query: Optional[Dict[str, Any]] = None,
                          limit: Optional[int] = None) -> List[dict]:
        cur = self.col.find(query or {}, _PROJECTION).sort("timestamps.placed", DESCENDING)
        if limit:
            cur = cur.limit(limit)
        return [d async for d in cur]

    async def count_orders(self, query: Optional[Dict[str, Any]] = None) -> int:
        return await self.col.count_documents(query or {})

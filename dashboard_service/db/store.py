"""
文档存储层
业务仓储只依赖 DocumentStore 接口；MongoDB 可用时使用 Motor 实现，
否则降级为进程内内存实现（重启即丢失，仅用于开发与测试）。
"""

import copy
import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument

from dashboard_service.db import get_mongo_db

logger = logging.getLogger(__name__)

Query = Dict[str, Any]
Sort = Tuple[str, int]


class DocumentStore:
    """文档存储接口：查询条件均为字段等值匹配"""

    async def find_one(self, collection: str, query: Query) -> Optional[dict]:
        raise NotImplementedError

    async def find(
        self, collection: str, query: Query, sort: Optional[Sort] = None
    ) -> List[dict]:
        raise NotImplementedError

    async def insert(self, collection: str, doc: dict) -> dict:
        raise NotImplementedError

    async def upsert(self, collection: str, query: Query, doc: dict) -> dict:
        """按 query 整条替换，不存在则插入"""
        raise NotImplementedError

    async def update(self, collection: str, query: Query, fields: dict) -> Optional[dict]:
        """更新匹配的第一条文档，返回更新后的文档；未匹配返回 None"""
        raise NotImplementedError

    async def delete(self, collection: str, query: Query) -> int:
        raise NotImplementedError


class MongoDocumentStore(DocumentStore):
    """基于 Motor 的 MongoDB 实现"""

    _PROJECTION = {"_id": 0}

    def __init__(self, db):
        self._db = db

    async def find_one(self, collection: str, query: Query) -> Optional[dict]:
        return await self._db[collection].find_one(query, self._PROJECTION)

    async def find(
        self, collection: str, query: Query, sort: Optional[Sort] = None
    ) -> List[dict]:
        cursor = self._db[collection].find(query, self._PROJECTION)
        if sort:
            cursor = cursor.sort(*sort)
        return await cursor.to_list(length=None)

    async def insert(self, collection: str, doc: dict) -> dict:
        await self._db[collection].insert_one(dict(doc))
        return doc

    async def upsert(self, collection: str, query: Query, doc: dict) -> dict:
        await self._db[collection].replace_one(query, dict(doc), upsert=True)
        return doc

    async def update(self, collection: str, query: Query, fields: dict) -> Optional[dict]:
        return await self._db[collection].find_one_and_update(
            query,
            {"$set": fields},
            projection=self._PROJECTION,
            return_document=ReturnDocument.AFTER,
        )

    async def delete(self, collection: str, query: Query) -> int:
        result = await self._db[collection].delete_many(query)
        return result.deleted_count


class MemoryDocumentStore(DocumentStore):
    """进程内实现，读写均做深拷贝，调用方无法修改已存储的文档"""

    def __init__(self):
        self._collections: Dict[str, List[dict]] = {}

    @staticmethod
    def _matches(doc: dict, query: Query) -> bool:
        return all(doc.get(k) == v for k, v in query.items())

    def _docs(self, collection: str) -> List[dict]:
        return self._collections.setdefault(collection, [])

    async def find_one(self, collection: str, query: Query) -> Optional[dict]:
        for doc in self._docs(collection):
            if self._matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def find(
        self, collection: str, query: Query, sort: Optional[Sort] = None
    ) -> List[dict]:
        docs = [copy.deepcopy(d) for d in self._docs(collection) if self._matches(d, query)]
        if sort:
            field, direction = sort
            docs.sort(key=lambda d: d.get(field), reverse=direction < 0)
        return docs

    async def insert(self, collection: str, doc: dict) -> dict:
        self._docs(collection).append(copy.deepcopy(doc))
        return doc

    async def upsert(self, collection: str, query: Query, doc: dict) -> dict:
        docs = self._docs(collection)
        for i, existing in enumerate(docs):
            if self._matches(existing, query):
                docs[i] = copy.deepcopy(doc)
                return doc
        docs.append(copy.deepcopy(doc))
        return doc

    async def update(self, collection: str, query: Query, fields: dict) -> Optional[dict]:
        for doc in self._docs(collection):
            if self._matches(doc, query):
                doc.update(copy.deepcopy(fields))
                return copy.deepcopy(doc)
        return None

    async def delete(self, collection: str, query: Query) -> int:
        docs = self._docs(collection)
        kept = [d for d in docs if not self._matches(d, query)]
        removed = len(docs) - len(kept)
        self._collections[collection] = kept
        return removed


# ── 模块级别单例 ──────────────────────────────────────────
_memory_store: Optional[MemoryDocumentStore] = None


def get_document_store() -> DocumentStore:
    """MongoDB 可用时返回 Motor 实现，否则返回进程内存实现"""
    global _memory_store
    db = get_mongo_db()
    if db is not None:
        return MongoDocumentStore(db)
    if _memory_store is None:
        logger.warning("⚠️ MongoDB 不可用，文档存储降级为内存模式")
        _memory_store = MemoryDocumentStore()
    return _memory_store

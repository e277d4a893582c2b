from pydantic import BaseModel


class CacheStatsOut(BaseModel):
    hits: int
    misses: int
    expired: int
    corrupt: int
    invalidations: int
    size: int
    hit_rate: float


class CacheInvalidationOut(BaseModel):
    zip_code: str
    invalidated: bool

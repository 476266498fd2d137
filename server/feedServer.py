import os
import logging
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# Load environment variables
load_dotenv()

from client.contentStore import Client as ContentStore
from client.redis import Client as RedisClient
from feed.categoryService import CategoryService
from feed.factService import FactService
from feed.statsService import StatsService
from feed.userService import UserService
from shared.config import Config, get_config
from shared.errors import FeedError
from shared.models import utcnow

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class FactCreate(BaseModel):
    title: str
    description: str
    category_id: str
    image: Optional[str] = None
    created_at: Optional[datetime] = None


class FactUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    image: Optional[str] = None


class CategoryCreate(BaseModel):
    name: str
    description: str = ''
    image: str = ''
    is_active: bool = True
    sort_order: int = 0


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class ViewCreate(BaseModel):
    view_duration: Optional[float] = None
    completion_rate: Optional[float] = None


class InterestsUpdate(BaseModel):
    interests: List[str] = []


class FeedServer:
    def __init__(self, store=None, cache=None, config: Optional[Config] = None, clock=utcnow, rng=None):
        """
        Initialize feed server

        Args:
            store: Content store (a fresh in-process store by default)
            cache: Cache client (Redis at REDIS_URL by default)
            config: Loaded configuration
            clock: Time source for the services
            rng: Random source for feed jitter
        """
        self.config = config or get_config()
        self.store = store or ContentStore(clock=clock)
        self.redis_client = cache or RedisClient(
            self.config.redis_url,
            socket_timeout=float(self.config.get('redis.socket_timeout', 2)),
        )
        self.fact_service = FactService(self.store, self.redis_client, self.config, clock=clock, rng=rng)
        self.category_service = CategoryService(self.store, self.redis_client, self.config)
        self.stats_service = StatsService(self.store, self.redis_client, self.config, clock=clock)
        self.user_service = UserService(self.store, self.redis_client)
        self.app = FastAPI()
        self.setup_routes()

    def setup_routes(self):
        """Setup FastAPI routes"""
        feed_config = self.config.get_feed_config()
        listing_config = self.config.get_listing_config()
        default_limit = int(feed_config.get('default_limit', 10))
        default_page_size = int(listing_config.get('default_page_size', 20))

        @self.app.exception_handler(FeedError)
        async def handle_feed_error(request: Request, exc: FeedError):
            if exc.status_code >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
            return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

        @self.app.get("/")
        def root():
            return {"status": "healthy", "service": "fact-feed"}

        # Facts

        @self.app.get("/facts")
        def list_facts(
            page: int = 1,
            limit: int = default_page_size,
            search: Optional[str] = None,
            category_id: Optional[str] = None,
            start_date: Optional[str] = None,
            end_date: Optional[str] = None,
            sort_by: str = 'created_at',
            sort_order: str = 'desc',
        ):
            result = self.fact_service.get_facts(
                page=page,
                limit=limit,
                search=search,
                category_id=category_id,
                start_date=start_date,
                end_date=end_date,
                sort_by=sort_by,
                sort_order=sort_order,
            )
            return {
                "facts": [fact.to_dict() for fact in result.facts],
                "total": result.total,
                "page": page,
                "limit": limit,
                "total_pages": (result.total + limit - 1) // limit,
            }

        @self.app.get("/facts/latest")
        def latest_facts(limit: int = default_limit, category_id: Optional[str] = None):
            return self.fact_service.get_latest_facts(limit=limit, category_id=category_id).to_dict()

        @self.app.get("/facts/feed")
        def get_feed(
            limit: int = default_limit,
            x_user_id: Optional[str] = Header(None),
            x_anon_id: Optional[str] = Header(None),
        ):
            return self.fact_service.get_feed(limit=limit, user_id=x_user_id, anon_id=x_anon_id).to_dict()

        @self.app.get("/facts/feed/category/{category_id}")
        def get_category_feed(
            category_id: str,
            limit: int = default_limit,
            x_user_id: Optional[str] = Header(None),
            x_anon_id: Optional[str] = Header(None),
        ):
            result = self.fact_service.get_feed_by_category(
                category_id, limit=limit, user_id=x_user_id, anon_id=x_anon_id
            )
            return result.to_dict()

        @self.app.get("/facts/count")
        def count_facts(category_id: Optional[str] = None):
            if category_id:
                return {"category_id": category_id, "count": self.fact_service.get_facts_count_by_category(category_id)}
            return {"count": self.fact_service.get_total_facts_count()}

        @self.app.post("/facts/recalculate-counts")
        def recalculate_counts():
            return {"categories_updated": self.fact_service.recalculate_all_category_facts_count()}

        @self.app.get("/facts/{fact_id}")
        def get_fact(fact_id: str):
            return self.fact_service.get_fact(fact_id).to_dict()

        @self.app.post("/facts", status_code=201)
        def create_fact(body: FactCreate):
            fact = self.fact_service.create(
                title=body.title,
                description=body.description,
                category_id=body.category_id,
                image=body.image,
                created_at=body.created_at,
            )
            return fact.to_dict()

        @self.app.patch("/facts/{fact_id}")
        def update_fact(fact_id: str, body: FactUpdate):
            return self.fact_service.update(fact_id, **body.model_dump(exclude_unset=True)).to_dict()

        @self.app.delete("/facts/{fact_id}")
        def delete_fact(fact_id: str):
            self.fact_service.delete(fact_id)
            return {"deleted": fact_id}

        @self.app.post("/facts/{fact_id}/view")
        def mark_as_viewed(
            fact_id: str,
            body: Optional[ViewCreate] = None,
            x_user_id: Optional[str] = Header(None),
            x_anon_id: Optional[str] = Header(None),
        ):
            body = body or ViewCreate()
            created = self.fact_service.mark_as_viewed(
                fact_id,
                user_id=x_user_id,
                anon_id=x_anon_id,
                view_duration=body.view_duration,
                completion_rate=body.completion_rate,
            )
            return {"fact_id": fact_id, "recorded": created}

        # Categories

        @self.app.get("/categories")
        def list_categories(is_active: Optional[bool] = None):
            return [category.to_dict() for category in self.category_service.find_all(is_active=is_active)]

        @self.app.get("/categories/active")
        def active_categories():
            return [category.to_dict() for category in self.category_service.get_active_categories()]

        @self.app.get("/categories/{category_id}")
        def get_category(category_id: str):
            return self.category_service.find_by_id(category_id).to_dict()

        @self.app.post("/categories", status_code=201)
        def create_category(body: CategoryCreate):
            return self.category_service.create(**body.model_dump()).to_dict()

        @self.app.patch("/categories/{category_id}")
        def update_category(category_id: str, body: CategoryUpdate):
            return self.category_service.update(category_id, **body.model_dump(exclude_unset=True)).to_dict()

        @self.app.delete("/categories/{category_id}")
        def delete_category(category_id: str):
            self.category_service.delete(category_id)
            return {"deleted": category_id}

        # Users

        @self.app.put("/users/{user_id}/interests")
        def set_interests(user_id: str, body: InterestsUpdate):
            user = self.user_service.set_interests(user_id, body.interests)
            return {"user_id": user.id, "interests": user.interests}

        # Stats and health

        @self.app.get("/stats")
        def get_stats():
            return self.stats_service.get_all_stats()

        @self.app.get("/stats/daily")
        def get_daily_stats(days: Optional[int] = None):
            return self.stats_service.get_daily_activity_stats(days)

        @self.app.get("/health")
        def health_check():
            healthy = self.redis_client.is_healthy()
            stats = self.redis_client.get_stats() if healthy else {}
            return {
                "status": "healthy" if healthy else "degraded",
                "cache": "up" if healthy else "down",
                "redis_memory": stats.get('used_memory_human', '0B'),
                "timestamp": utcnow().isoformat()
            }


def create_app(**kwargs) -> FastAPI:
    return FeedServer(**kwargs).app


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv('PORT', 8080))
    host = os.getenv('HOST', '0.0.0.0')

    logger.info(f"Starting feed server on {host}:{port}")
    uvicorn.run(create_app(), host=host, port=port)

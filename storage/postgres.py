# storage/postgres.py
import logging
from contextlib import asynccontextmanager
from datetime import datetime

import psycopg
from psycopg import AsyncConnection

from models import (
    Bid,
    BidCreate,
    BidWithRepairman,
    ChatMessage,
    Listing,
    ListingCreate,
    PendingSubscription,
    Review,
    ReviewCreate,
    Subscription,
    SubscriptionCreate,
    User,
)
from storage.base import Storage, StorageError

logger = logging.getLogger(__name__)

USER_COLUMNS = "id, username, password, is_repairman, is_admin, is_blocked, created_at"
LISTING_COLUMNS = "id, user_id, title, description, category, image_url, budget, status, created_at"
BID_COLUMNS = "id, listing_id, repairman_id, amount, comment, status, created_at"
MESSAGE_COLUMNS = "id, listing_id, sender_id, message, created_at"
REVIEW_COLUMNS = "id, listing_id, repairman_id, user_id, rating, comment, created_at"
SUBSCRIPTION_COLUMNS = "id, user_id, amount, payment_proof, status, start_date, end_date, created_at"


class PostgresStorage(Storage):
    """
    Raw SQL over one borrowed psycopg connection (rows as dicts).

    Every query runs inside ``_cursor`` so driver errors surface as
    ``StorageError`` with the failed action in the message.
    """

    def __init__(self, conn: AsyncConnection):
        self.conn = conn

    @asynccontextmanager
    async def _cursor(self, action: str):
        try:
            async with self.conn.cursor() as cur:
                yield cur
        except psycopg.Error as exc:
            logger.exception("Failed to %s", action)
            raise StorageError(f"Failed to {action}") from exc

    # =========================================================
    # Users
    # =========================================================
    async def get_user(self, user_id: int) -> User | None:
        async with self._cursor("get user") as cur:
            await cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = %s", (user_id,))
            row = await cur.fetchone()
        return User.model_validate(row) if row else None

    async def get_user_by_username(self, username: str) -> User | None:
        async with self._cursor("get user by username") as cur:
            await cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE username = %s", (username,))
            row = await cur.fetchone()
        return User.model_validate(row) if row else None

    async def create_user(
        self, username: str, password_hash: str, is_repairman: bool, is_admin: bool
    ) -> User:
        async with self._cursor("create user") as cur:
            await cur.execute(
                f"""
                INSERT INTO users (username, password, is_repairman, is_admin)
                VALUES (%s, %s, %s, %s)
                RETURNING {USER_COLUMNS}
                """,
                (username, password_hash, is_repairman, is_admin),
            )
            row = await cur.fetchone()
        return User.model_validate(row)

    async def get_users(self) -> list[User]:
        async with self._cursor("get users") as cur:
            await cur.execute(f"SELECT {USER_COLUMNS} FROM users ORDER BY id")
            rows = await cur.fetchall()
        return [User.model_validate(r) for r in rows]

    async def get_users_by_ids(self, ids: list[int]) -> list[User]:
        if not ids:
            return []
        async with self._cursor("get users by ids") as cur:
            await cur.execute(
                f"SELECT {USER_COLUMNS} FROM users WHERE id = ANY(%s)", (list(ids),)
            )
            rows = await cur.fetchall()
        return [User.model_validate(r) for r in rows]

    async def set_user_blocked(self, user_id: int, blocked: bool) -> User | None:
        async with self._cursor("update user block status") as cur:
            await cur.execute(
                f"UPDATE users SET is_blocked = %s WHERE id = %s RETURNING {USER_COLUMNS}",
                (blocked, user_id),
            )
            row = await cur.fetchone()
        return User.model_validate(row) if row else None

    # =========================================================
    # Listings
    # =========================================================
    async def create_listing(self, user_id: int, data: ListingCreate) -> Listing:
        async with self._cursor("create listing") as cur:
            await cur.execute(
                f"""
                INSERT INTO listings (user_id, title, description, category, image_url, budget, status)
                VALUES (%s, %s, %s, %s, %s, %s, 'open')
                RETURNING {LISTING_COLUMNS}
                """,
                (user_id, data.title, data.description, data.category, data.image_url, data.budget),
            )
            row = await cur.fetchone()
        return Listing.model_validate(row)

    async def get_listing(self, listing_id: int) -> Listing | None:
        async with self._cursor("get listing") as cur:
            await cur.execute(f"SELECT {LISTING_COLUMNS} FROM listings WHERE id = %s", (listing_id,))
            row = await cur.fetchone()
        return Listing.model_validate(row) if row else None

    async def get_listings(self) -> list[Listing]:
        async with self._cursor("get listings") as cur:
            await cur.execute(f"SELECT {LISTING_COLUMNS} FROM listings ORDER BY created_at DESC, id DESC")
            rows = await cur.fetchall()
        return [Listing.model_validate(r) for r in rows]

    async def get_listings_by_category(self, category: str) -> list[Listing]:
        async with self._cursor("get listings by category") as cur:
            # ILIKE: case-insensitive substring match
            await cur.execute(
                f"""
                SELECT {LISTING_COLUMNS} FROM listings
                WHERE category ILIKE %s
                ORDER BY created_at DESC, id DESC
                """,
                (f"%{category}%",),
            )
            rows = await cur.fetchall()
        return [Listing.model_validate(r) for r in rows]

    async def update_listing_status(self, listing_id: int, status: str) -> Listing | None:
        async with self._cursor("update listing status") as cur:
            await cur.execute(
                f"UPDATE listings SET status = %s WHERE id = %s RETURNING {LISTING_COLUMNS}",
                (status, listing_id),
            )
            row = await cur.fetchone()
        return Listing.model_validate(row) if row else None

    async def delete_listing(self, listing_id: int) -> bool:
        async with self._cursor("delete listing") as cur:
            async with self.conn.transaction():
                # Children first; the foreign keys cascade too, this keeps it explicit
                await cur.execute("DELETE FROM bids WHERE listing_id = %s", (listing_id,))
                await cur.execute("DELETE FROM chat_messages WHERE listing_id = %s", (listing_id,))
                await cur.execute("DELETE FROM reviews WHERE listing_id = %s", (listing_id,))
                await cur.execute("DELETE FROM listings WHERE id = %s", (listing_id,))
                deleted = cur.rowcount > 0
        return deleted

    # =========================================================
    # Bids
    # =========================================================
    async def create_bid(self, listing_id: int, repairman_id: int, data: BidCreate) -> Bid:
        async with self._cursor("create bid") as cur:
            await cur.execute(
                f"""
                INSERT INTO bids (listing_id, repairman_id, amount, comment, status)
                VALUES (%s, %s, %s, %s, 'pending')
                RETURNING {BID_COLUMNS}
                """,
                (listing_id, repairman_id, data.amount, data.comment),
            )
            row = await cur.fetchone()
        return Bid.model_validate(row)

    async def get_bid(self, bid_id: int) -> Bid | None:
        async with self._cursor("get bid") as cur:
            await cur.execute(f"SELECT {BID_COLUMNS} FROM bids WHERE id = %s", (bid_id,))
            row = await cur.fetchone()
        return Bid.model_validate(row) if row else None

    async def get_bids_for_listing(self, listing_id: int) -> list[BidWithRepairman]:
        async with self._cursor("get bids") as cur:
            await cur.execute(
                """
                SELECT b.id, b.listing_id, b.repairman_id, b.amount, b.comment, b.status,
                       b.created_at, COALESCE(u.username, 'Unknown') AS repairman_name
                FROM bids b
                LEFT JOIN users u ON b.repairman_id = u.id
                WHERE b.listing_id = %s
                ORDER BY b.created_at ASC, b.id ASC
                """,
                (listing_id,),
            )
            rows = await cur.fetchall()
        return [BidWithRepairman.model_validate(r) for r in rows]

    async def get_bids_for_repairman(self, repairman_id: int) -> list[Bid]:
        async with self._cursor("get repairman's bids") as cur:
            await cur.execute(
                f"""
                SELECT {BID_COLUMNS} FROM bids
                WHERE repairman_id = %s
                ORDER BY created_at DESC, id DESC
                """,
                (repairman_id,),
            )
            rows = await cur.fetchall()
        return [Bid.model_validate(r) for r in rows]

    async def accept_bid(self, listing_id: int, bid_id: int) -> bool:
        accepted = False
        async with self._cursor("accept bid") as cur:
            async with self.conn.transaction() as tx:
                # The status guard makes a second acceptance on the same listing a no-op
                await cur.execute(
                    "UPDATE listings SET status = 'in_progress' WHERE id = %s AND status = 'open'",
                    (listing_id,),
                )
                if cur.rowcount != 1:
                    raise psycopg.Rollback(tx)

                await cur.execute(
                    """
                    UPDATE bids SET status = 'accepted'
                    WHERE id = %s AND listing_id = %s AND status = 'pending'
                    """,
                    (bid_id, listing_id),
                )
                if cur.rowcount != 1:
                    raise psycopg.Rollback(tx)

                accepted = True
        return accepted

    # =========================================================
    # Chat
    # =========================================================
    async def create_chat_message(
        self, listing_id: int, sender_id: int, message: str
    ) -> ChatMessage:
        async with self._cursor("create chat message") as cur:
            await cur.execute(
                f"""
                INSERT INTO chat_messages (listing_id, sender_id, message)
                VALUES (%s, %s, %s)
                RETURNING {MESSAGE_COLUMNS}
                """,
                (listing_id, sender_id, message),
            )
            row = await cur.fetchone()
        return ChatMessage.model_validate(row)

    async def get_chat_messages(self, listing_id: int) -> list[ChatMessage]:
        async with self._cursor("get chat messages") as cur:
            await cur.execute(
                f"""
                SELECT {MESSAGE_COLUMNS} FROM chat_messages
                WHERE listing_id = %s
                ORDER BY created_at ASC, id ASC
                """,
                (listing_id,),
            )
            rows = await cur.fetchall()
        return [ChatMessage.model_validate(r) for r in rows]

    # =========================================================
    # Reviews
    # =========================================================
    async def create_review(
        self, listing_id: int, repairman_id: int, user_id: int, data: ReviewCreate
    ) -> Review:
        async with self._cursor("create review") as cur:
            await cur.execute(
                f"""
                INSERT INTO reviews (listing_id, repairman_id, user_id, rating, comment)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {REVIEW_COLUMNS}
                """,
                (listing_id, repairman_id, user_id, data.rating, data.comment),
            )
            row = await cur.fetchone()
        return Review.model_validate(row)

    async def get_review_by_user(self, listing_id: int, user_id: int) -> Review | None:
        async with self._cursor("get review") as cur:
            await cur.execute(
                f"SELECT {REVIEW_COLUMNS} FROM reviews WHERE listing_id = %s AND user_id = %s",
                (listing_id, user_id),
            )
            row = await cur.fetchone()
        return Review.model_validate(row) if row else None

    async def get_reviews_for_repairman(self, repairman_id: int) -> list[Review]:
        async with self._cursor("get reviews") as cur:
            await cur.execute(
                f"""
                SELECT {REVIEW_COLUMNS} FROM reviews
                WHERE repairman_id = %s
                ORDER BY created_at DESC, id DESC
                """,
                (repairman_id,),
            )
            rows = await cur.fetchall()
        return [Review.model_validate(r) for r in rows]

    # =========================================================
    # Subscriptions
    # =========================================================
    async def create_subscription(self, user_id: int, data: SubscriptionCreate) -> Subscription:
        async with self._cursor("create subscription") as cur:
            await cur.execute(
                f"""
                INSERT INTO subscriptions (user_id, amount, payment_proof, status)
                VALUES (%s, %s, %s, 'pending')
                RETURNING {SUBSCRIPTION_COLUMNS}
                """,
                (user_id, data.amount, data.payment_proof),
            )
            row = await cur.fetchone()
        return Subscription.model_validate(row)

    async def get_subscription(self, user_id: int) -> Subscription | None:
        async with self._cursor("get subscription") as cur:
            await cur.execute(
                f"""
                SELECT {SUBSCRIPTION_COLUMNS} FROM subscriptions
                WHERE user_id = %s
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (user_id,),
            )
            row = await cur.fetchone()
        return Subscription.model_validate(row) if row else None

    async def get_subscription_by_id(self, subscription_id: int) -> Subscription | None:
        async with self._cursor("get subscription") as cur:
            await cur.execute(
                f"SELECT {SUBSCRIPTION_COLUMNS} FROM subscriptions WHERE id = %s",
                (subscription_id,),
            )
            row = await cur.fetchone()
        return Subscription.model_validate(row) if row else None

    async def update_subscription_status(
        self,
        subscription_id: int,
        status: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> Subscription | None:
        async with self._cursor("update subscription status") as cur:
            await cur.execute(
                f"""
                UPDATE subscriptions SET status = %s, start_date = %s, end_date = %s
                WHERE id = %s
                RETURNING {SUBSCRIPTION_COLUMNS}
                """,
                (status, start_date, end_date, subscription_id),
            )
            row = await cur.fetchone()
        return Subscription.model_validate(row) if row else None

    async def get_pending_subscriptions(self) -> list[PendingSubscription]:
        async with self._cursor("get pending subscriptions") as cur:
            await cur.execute(
                """
                SELECT s.id, s.user_id, s.amount, s.payment_proof, s.status,
                       s.start_date, s.end_date, s.created_at, u.username
                FROM subscriptions s
                JOIN users u ON s.user_id = u.id
                WHERE s.status = 'pending'
                ORDER BY s.created_at DESC, s.id DESC
                """
            )
            rows = await cur.fetchall()
        return [PendingSubscription.model_validate(r) for r in rows]

    async def ping(self) -> bool:
        async with self._cursor("reach the database") as cur:
            await cur.execute("SELECT 1 AS connection_test")
            row = await cur.fetchone()
        return bool(row and row["connection_test"] == 1)

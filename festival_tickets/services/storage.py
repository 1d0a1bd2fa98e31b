"""
Storage adapters: S3 for generated assets, DynamoDB for tickets and ratings.

The pipeline and the HTTP layer only see the abstract interfaces, so the
backing stores can be swapped (tests use in-memory fakes or moto).
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from .ticket_ingestion.errors import StorageError
from .ticket_ingestion.models import NewTicket, Ticket

logger = logging.getLogger(__name__)


@dataclass
class Rating:
    """A user's 1-10 rating of a film"""

    user_email: str
    act: str
    rating: int
    comment: Optional[str]
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userEmail": self.user_email,
            "act": self.act,
            "rating": self.rating,
            "comment": self.comment,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class ObjectStorage(ABC):
    """Interface for blob storage of QR images and uploaded PDFs."""

    @abstractmethod
    def store(self, data: bytes, content_type: str, key: str) -> str:
        """Store bytes under key and return a publicly resolvable URL."""
        ...


class TicketStore(ABC):
    """Interface for ticket persistence operations."""

    @abstractmethod
    def create(self, ticket: NewTicket) -> Ticket:
        """Persist a ticket, assigning its id and created_at."""
        ...

    @abstractmethod
    def list_all(self) -> List[Ticket]:
        """Return all tickets ordered by created_at descending."""
        ...

    @abstractmethod
    def get(self, ticket_id: str) -> Optional[Ticket]:
        """Return a ticket by id, or None if not found."""
        ...

    @abstractmethod
    def list_by_screening(self, act: str, date: str, start: str) -> List[Ticket]:
        """Return the tickets of one screening ordered by created_at ascending."""
        ...

    @abstractmethod
    def delete(self, ticket_id: str) -> bool:
        """Delete a ticket; return False if it did not exist."""
        ...

    @abstractmethod
    def acts_without_festival_link(self) -> List[str]:
        """Return the distinct acts that still have tickets without a festival link."""
        ...

    @abstractmethod
    def set_festival_link(self, act: str, festival_link: str) -> int:
        """Set the festival link on every ticket of act that has none; return the count."""
        ...


class RatingStore(ABC):
    """Interface for rating persistence, one rating per user and act."""

    @abstractmethod
    def get(self, user_email: str, act: str) -> Optional[Rating]:
        ...

    @abstractmethod
    def list_by_act(self, act: str) -> List[Rating]:
        ...

    @abstractmethod
    def average(self, act: str) -> Optional[Tuple[float, int]]:
        """Return (average, count) for an act, or None when nobody rated it."""
        ...

    @abstractmethod
    def upsert(self, user_email: str, act: str, rating: int, comment: Optional[str] = None) -> Rating:
        ...

    @abstractmethod
    def delete(self, user_email: str, act: str) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class S3ObjectStorage(ObjectStorage):
    """Public-read S3 bucket storage"""

    def __init__(self, bucket: str, public_base_url: Optional[str] = None, region_name: Optional[str] = None):
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.s3 = boto3.client("s3", region_name=region_name)
        logger.info(f"Initialized S3ObjectStorage for bucket: {bucket}")

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        region = self.s3.meta.region_name
        return f"https://{self.bucket}.s3.{region}.amazonaws.com/{key}"

    def store(self, data: bytes, content_type: str, key: str) -> str:
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error uploading {key} to S3: {e}")
            raise StorageError(f"Failed to store {key}") from e

        logger.info(f"Stored {len(data)} bytes at s3://{self.bucket}/{key}")
        return self.url_for(key)


class _DynamoDBTable:
    """Shared table access and paginated scans"""

    def __init__(self, table_name: str, region_name: Optional[str] = None):
        self.table_name = table_name
        self.dynamodb = boto3.resource("dynamodb", region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized {type(self).__name__} for table: {table_name}")

    def _scan(self, **kwargs) -> List[Dict[str, Any]]:
        try:
            response = self.table.scan(**kwargs)
            items = response.get("Items", [])

            # Handle pagination
            while "LastEvaluatedKey" in response:
                response = self.table.scan(ExclusiveStartKey=response["LastEvaluatedKey"], **kwargs)
                items.extend(response.get("Items", []))
        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table {self.table_name}: {e}")
            raise StorageError(f"Failed to read from {self.table_name}") from e
        return items


class DynamoDBTicketStore(_DynamoDBTable, TicketStore):
    """Tickets keyed by id"""

    def create(self, ticket: NewTicket) -> Ticket:
        stored = Ticket(
            id=str(uuid.uuid4()),
            act=ticket.act,
            location=ticket.location,
            date=ticket.date,
            start=ticket.start,
            qr_code_url=ticket.qr_code_url,
            created_at=_utcnow(),
            pdf_url=ticket.pdf_url or "",
            transaction_id=ticket.transaction_id,
            festival_link=ticket.festival_link,
        )
        try:
            self.table.put_item(Item=self._ticket_to_item(stored))
        except ClientError as e:
            logger.error(f"Error writing ticket to DynamoDB: {e}")
            raise StorageError("Failed to save ticket") from e

        logger.info(f"Created ticket {stored.id} for {stored.act}")
        return stored

    def list_all(self) -> List[Ticket]:
        tickets = [self._item_to_ticket(item) for item in self._scan()]
        return sorted(tickets, key=lambda ticket: ticket.created_at, reverse=True)

    def get(self, ticket_id: str) -> Optional[Ticket]:
        try:
            response = self.table.get_item(Key={"id": ticket_id})
        except ClientError as e:
            logger.error(f"Error reading ticket {ticket_id}: {e}")
            raise StorageError("Failed to read ticket") from e

        item = response.get("Item")
        return self._item_to_ticket(item) if item else None

    def list_by_screening(self, act: str, date: str, start: str) -> List[Ticket]:
        items = self._scan(FilterExpression=Attr("act").eq(act) & Attr("date").eq(date) & Attr("start").eq(start))
        tickets = [self._item_to_ticket(item) for item in items]
        return sorted(tickets, key=lambda ticket: ticket.created_at)

    def delete(self, ticket_id: str) -> bool:
        try:
            response = self.table.delete_item(Key={"id": ticket_id}, ReturnValues="ALL_OLD")
        except ClientError as e:
            logger.error(f"Error deleting ticket {ticket_id}: {e}")
            raise StorageError("Failed to delete ticket") from e

        deleted = "Attributes" in response
        if deleted:
            logger.info(f"Deleted ticket {ticket_id}")
        return deleted

    def acts_without_festival_link(self) -> List[str]:
        items = self._scan(FilterExpression=Attr("festival_link").not_exists())
        return sorted({item["act"] for item in items})

    def set_festival_link(self, act: str, festival_link: str) -> int:
        items = self._scan(FilterExpression=Attr("act").eq(act) & Attr("festival_link").not_exists())
        for item in items:
            try:
                self.table.update_item(
                    Key={"id": item["id"]},
                    UpdateExpression="SET festival_link = :link",
                    ExpressionAttributeValues={":link": festival_link},
                )
            except ClientError as e:
                logger.error(f"Error updating festival link on ticket {item['id']}: {e}")
                raise StorageError("Failed to update festival link") from e
        return len(items)

    @staticmethod
    def _ticket_to_item(ticket: Ticket) -> Dict[str, Any]:
        item = {
            "id": ticket.id,
            "act": ticket.act,
            "location": ticket.location,
            "date": ticket.date,
            "start": ticket.start,
            "qr_code_url": ticket.qr_code_url,
            "pdf_url": ticket.pdf_url,
            "created_at": ticket.created_at.isoformat(),
        }
        # DynamoDB drops absent attributes rather than storing nulls
        if ticket.transaction_id:
            item["transaction_id"] = ticket.transaction_id
        if ticket.festival_link:
            item["festival_link"] = ticket.festival_link
        return item

    @staticmethod
    def _item_to_ticket(item: Dict[str, Any]) -> Ticket:
        return Ticket(
            id=item["id"],
            act=item["act"],
            location=item["location"],
            date=item["date"],
            start=item["start"],
            qr_code_url=item["qr_code_url"],
            created_at=datetime.fromisoformat(item["created_at"]),
            pdf_url=item.get("pdf_url", ""),
            transaction_id=item.get("transaction_id"),
            festival_link=item.get("festival_link"),
        )


class DynamoDBRatingStore(_DynamoDBTable, RatingStore):
    """Ratings keyed by (user_email, act)"""

    def get(self, user_email: str, act: str) -> Optional[Rating]:
        try:
            response = self.table.get_item(Key={"user_email": user_email, "act": act})
        except ClientError as e:
            logger.error(f"Error reading rating: {e}")
            raise StorageError("Failed to read rating") from e

        item = response.get("Item")
        return self._item_to_rating(item) if item else None

    def list_by_act(self, act: str) -> List[Rating]:
        ratings = [self._item_to_rating(item) for item in self._scan(FilterExpression=Attr("act").eq(act))]
        return sorted(ratings, key=lambda rating: rating.created_at, reverse=True)

    def average(self, act: str) -> Optional[Tuple[float, int]]:
        ratings = self.list_by_act(act)
        if not ratings:
            return None
        return sum(rating.rating for rating in ratings) / len(ratings), len(ratings)

    def upsert(self, user_email: str, act: str, rating: int, comment: Optional[str] = None) -> Rating:
        now = _utcnow().isoformat()
        try:
            response = self.table.update_item(
                Key={"user_email": user_email, "act": act},
                UpdateExpression=(
                    "SET rating = :rating, #comment = :comment, updated_at = :now, "
                    "created_at = if_not_exists(created_at, :now)"
                ),
                ExpressionAttributeNames={"#comment": "comment"},
                ExpressionAttributeValues={":rating": rating, ":comment": comment or None, ":now": now},
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            logger.error(f"Error saving rating: {e}")
            raise StorageError("Failed to save rating") from e

        return self._item_to_rating(response["Attributes"])

    def delete(self, user_email: str, act: str) -> None:
        try:
            self.table.delete_item(Key={"user_email": user_email, "act": act})
        except ClientError as e:
            logger.error(f"Error deleting rating: {e}")
            raise StorageError("Failed to delete rating") from e

    @staticmethod
    def _item_to_rating(item: Dict[str, Any]) -> Rating:
        return Rating(
            user_email=item["user_email"],
            act=item["act"],
            rating=int(item["rating"]),
            comment=item.get("comment"),
            created_at=datetime.fromisoformat(item["created_at"]),
            updated_at=datetime.fromisoformat(item["updated_at"]),
        )

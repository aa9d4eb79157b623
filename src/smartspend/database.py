"""
Storage for receipts, merchants, products and price observations.

The repository classes are the access contract the rest of the package
depends on; ``SQLiteStorage`` satisfies all four on one SQLite file.
sqlite errors are logged and re-raised as ``StorageError``; retry policy
belongs to the caller.
"""

import json
import uuid
import sqlite3
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .config import Settings
from .exceptions import InputValidationError, StorageError
from .merchants import DEFAULT_MERCHANTS
from .models import (LineItem, Merchant, PaginatedResult, Product, ProductPrice, Receipt,
                     ReceiptCreate, ReceiptFilter, ReceiptUpdate)
from .products import normalize_product_name

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20


def _new_id() -> str:
    return uuid.uuid4().hex


def _check_page(page: int, page_size: int) -> None:
    if page < 1:
        raise InputValidationError(f"Page must be >= 1, got {page}")
    if page_size < 1:
        raise InputValidationError(f"Page size must be >= 1, got {page_size}")


def _to_db(value: Any) -> Any:
    """Convert a model value into a sqlite parameter."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _decimal(value: Any) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Repository contracts
# ---------------------------------------------------------------------------

class ReceiptRepository(ABC):
    """Receipts and their owned line items."""

    @abstractmethod
    def create(self, receipt: ReceiptCreate) -> Receipt:
        """Insert a new receipt with a fresh identifier."""

    @abstractmethod
    def save(self, receipt: Receipt) -> Receipt:
        """Insert or overwrite a receipt, replacing its line items."""

    @abstractmethod
    def find_by_id(self, receipt_id: str) -> Optional[Receipt]:
        """Receipt with its line items, or None."""

    @abstractmethod
    def find_all(self, receipt_filter: Optional[ReceiptFilter] = None, page: int = 1,
                 page_size: int = DEFAULT_PAGE_SIZE) -> PaginatedResult[Receipt]:
        """Filtered receipts, newest first."""

    @abstractmethod
    def update(self, receipt_id: str, updates: ReceiptUpdate) -> Optional[Receipt]:
        """Apply header changes; None if the receipt does not exist."""

    @abstractmethod
    def delete(self, receipt_id: str) -> bool:
        """Delete a receipt and its line items."""


class MerchantRepository(ABC):
    """Known merchants. Only the pattern set changes after creation."""

    @abstractmethod
    def create(self, merchant: Merchant) -> Merchant:
        pass

    @abstractmethod
    def find_by_id(self, merchant_id: str) -> Optional[Merchant]:
        pass

    @abstractmethod
    def find_all(self, search: Optional[str] = None, page: int = 1,
                 page_size: int = DEFAULT_PAGE_SIZE) -> PaginatedResult[Merchant]:
        pass

    @abstractmethod
    def update(self, merchant_id: str, patterns: List[str]) -> Optional[Merchant]:
        """Replace the merchant's matching patterns."""

    @abstractmethod
    def delete(self, merchant_id: str) -> bool:
        pass


class ProductRepository(ABC):
    """Catalog products used as matching targets."""

    @abstractmethod
    def create(self, product: Product) -> Product:
        pass

    @abstractmethod
    def find_by_id(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    def find_by_barcode(self, barcode: str) -> Optional[Product]:
        pass

    @abstractmethod
    def find_all(self, search: Optional[str] = None, page: int = 1,
                 page_size: int = DEFAULT_PAGE_SIZE) -> PaginatedResult[Product]:
        pass

    @abstractmethod
    def list_all(self) -> List[Product]:
        """Every product, for building a matcher."""

    @abstractmethod
    def update(self, product: Product) -> Optional[Product]:
        pass

    @abstractmethod
    def delete(self, product_id: str) -> bool:
        pass


class ProductPriceRepository(ABC):
    """Observed product prices."""

    @abstractmethod
    def create(self, price: ProductPrice) -> ProductPrice:
        pass

    @abstractmethod
    def find_by_id(self, price_id: str) -> Optional[ProductPrice]:
        pass

    @abstractmethod
    def find_by_product(self, product_id: str) -> List[ProductPrice]:
        """All observations of one product, oldest first."""

    @abstractmethod
    def find_all(self, product_id: Optional[str] = None, merchant_id: Optional[str] = None,
                 page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> PaginatedResult[ProductPrice]:
        pass

    @abstractmethod
    def update(self, price: ProductPrice) -> Optional[ProductPrice]:
        pass

    @abstractmethod
    def delete(self, price_id: str) -> bool:
        pass


# ---------------------------------------------------------------------------
# SQLite implementation
# ---------------------------------------------------------------------------

class SQLiteStorage:
    """Owns the SQLite file and exposes one repository per entity."""

    def __init__(self, db_path: str = "smartspend.db"):
        """Initialize storage.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self.logger = logger
        self.receipts = SQLiteReceiptRepository(self)
        self.merchants = SQLiteMerchantRepository(self)
        self.products = SQLiteProductRepository(self)
        self.prices = SQLiteProductPriceRepository(self)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SQLiteStorage":
        """Storage at the configured ``database_path``."""
        return cls(settings.database_path)

    @contextmanager
    def get_connection(self):
        """Context manager for database connections with automatic cleanup."""
        conn = None
        try:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        except sqlite3.Error as e:
            if conn:
                conn.rollback()
            self.logger.error(f"Database error: {str(e)}")
            raise StorageError(f"Database error: {str(e)}") from e
        except Exception:
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                conn.close()

    def initialize_database(self) -> None:
        """Initialize database with proper schema and indexes."""
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS merchants (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        display_name TEXT NOT NULL,
                        category TEXT NOT NULL DEFAULT 'other'
                            CHECK (category IN ('grocery', 'supermarket', 'convenience', 'other')),
                        patterns TEXT NOT NULL DEFAULT '[]',
                        logo_url TEXT,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS receipts (
                        id TEXT PRIMARY KEY,
                        merchant_id TEXT,
                        merchant_name TEXT NOT NULL DEFAULT 'Unknown',
                        purchase_date DATE,
                        total DECIMAL(12,2) CHECK (total IS NULL OR total >= 0),
                        currency TEXT DEFAULT 'TRY' CHECK (length(currency) = 3),
                        status TEXT NOT NULL DEFAULT 'processing'
                            CHECK (status IN ('processing', 'completed', 'failed')),
                        ocr_confidence REAL CHECK (ocr_confidence IS NULL OR
                                                   (ocr_confidence >= 0 AND ocr_confidence <= 1)),
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS line_items (
                        id TEXT PRIMARY KEY,
                        receipt_id TEXT NOT NULL REFERENCES receipts(id) ON DELETE CASCADE,
                        position INTEGER NOT NULL,
                        name TEXT NOT NULL,
                        clean_name TEXT,
                        quantity DECIMAL(12,3) NOT NULL CHECK (quantity > 0),
                        unit TEXT,
                        unit_price DECIMAL(12,2) NOT NULL CHECK (unit_price >= 0),
                        total_price DECIMAL(12,2) NOT NULL CHECK (total_price >= 0),
                        confidence REAL NOT NULL DEFAULT 1.0,
                        category TEXT,
                        taxonomy_id TEXT,
                        product_id TEXT,
                        barcode TEXT,
                        discount DECIMAL(12,2) CHECK (discount IS NULL OR discount >= 0)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS products (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        category TEXT NOT NULL DEFAULT 'other',
                        barcode TEXT UNIQUE,
                        normalized_name TEXT NOT NULL DEFAULT '',
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS product_prices (
                        id TEXT PRIMARY KEY,
                        product_id TEXT NOT NULL REFERENCES products(id) ON DELETE CASCADE,
                        merchant_id TEXT NOT NULL,
                        price DECIMAL(12,2) NOT NULL CHECK (price >= 0),
                        observed_on DATE NOT NULL,
                        source TEXT NOT NULL DEFAULT 'manual'
                            CHECK (source IN ('manual', 'scraped', 'user_reported'))
                    )
                """)

                # Indexes for the filter shapes used by find_all
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_receipts_date ON receipts(purchase_date)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_receipts_merchant ON receipts(merchant_id)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_receipts_total ON receipts(total)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_receipts_merchant_date "
                               "ON receipts(merchant_id, purchase_date)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_line_items_receipt "
                               "ON line_items(receipt_id, position)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_products_normalized "
                               "ON products(normalized_name)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_prices_product "
                               "ON product_prices(product_id, observed_on)")

                cursor.execute("""
                    CREATE TRIGGER IF NOT EXISTS update_receipts_updated_at
                    AFTER UPDATE ON receipts
                    BEGIN
                        UPDATE receipts SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
                    END
                """)

                conn.commit()
                self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def seed_merchants(self, merchants: Optional[Iterable[Merchant]] = None) -> int:
        """Insert known merchants, leaving existing rows untouched.

        Args:
            merchants: Merchants to seed; defaults to the bundled retailers

        Returns:
            Number of merchants inserted
        """
        merchants = list(merchants if merchants is not None else DEFAULT_MERCHANTS)
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                inserted = 0
                for merchant in merchants:
                    cursor.execute("""
                        INSERT OR IGNORE INTO merchants (id, name, display_name, category, patterns, logo_url)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, (
                        merchant.id,
                        merchant.name,
                        merchant.display_name,
                        merchant.category.value,
                        json.dumps(merchant.patterns, ensure_ascii=False),
                        merchant.logo_url,
                    ))
                    inserted += cursor.rowcount
                conn.commit()
                self.logger.info(f"Seeded {inserted} merchants")
                return inserted

        except Exception as e:
            self.logger.error(f"Failed to seed merchants: {str(e)}")
            raise


class _SQLiteRepository:
    def __init__(self, storage: SQLiteStorage):
        self.storage = storage
        self.logger = logger

    def get_connection(self):
        return self.storage.get_connection()


class SQLiteReceiptRepository(_SQLiteRepository, ReceiptRepository):
    """Receipt repository on SQLite."""

    def create(self, receipt: ReceiptCreate) -> Receipt:
        """Add a new receipt to the database.

        Args:
            receipt: Receipt data to add

        Returns:
            Stored receipt with its generated identifier
        """
        return self.save(Receipt(id=_new_id(), **receipt.model_dump()))

    def save(self, receipt: Receipt) -> Receipt:
        """Insert or overwrite a receipt.

        Line items are replaced as a whole inside one transaction, so
        re-saving the same receipt never duplicates items.

        Args:
            receipt: Receipt to store; an identifier is generated if missing

        Returns:
            Receipt as stored
        """
        receipt_id = receipt.id or _new_id()
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    INSERT INTO receipts (
                        id, merchant_id, merchant_name, purchase_date, total,
                        currency, status, ocr_confidence
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        merchant_id = excluded.merchant_id,
                        merchant_name = excluded.merchant_name,
                        purchase_date = excluded.purchase_date,
                        total = excluded.total,
                        currency = excluded.currency,
                        status = excluded.status,
                        ocr_confidence = excluded.ocr_confidence
                """, (
                    receipt_id,
                    receipt.merchant_id,
                    receipt.merchant_name,
                    _to_db(receipt.purchase_date),
                    _to_db(receipt.total),
                    receipt.currency,
                    receipt.status.value,
                    receipt.ocr_confidence,
                ))

                cursor.execute("DELETE FROM line_items WHERE receipt_id = ?", (receipt_id,))
                for position, item in enumerate(receipt.items):
                    cursor.execute("""
                        INSERT INTO line_items (
                            id, receipt_id, position, name, clean_name, quantity, unit,
                            unit_price, total_price, confidence, category, taxonomy_id,
                            product_id, barcode, discount
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        item.id or f"{receipt_id}:{position}",
                        receipt_id,
                        position,
                        item.name,
                        item.clean_name,
                        _to_db(item.quantity),
                        item.unit,
                        _to_db(item.unit_price),
                        _to_db(item.total_price),
                        item.confidence,
                        item.category,
                        item.taxonomy_id,
                        item.product_id,
                        item.barcode,
                        _to_db(item.discount),
                    ))

                conn.commit()
                self.logger.info(f"Saved receipt {receipt_id} with {len(receipt.items)} items")

                return self._load(conn, receipt_id)

        except Exception as e:
            self.logger.error(f"Failed to save receipt {receipt_id}: {str(e)}")
            raise

    def find_by_id(self, receipt_id: str) -> Optional[Receipt]:
        try:
            with self.get_connection() as conn:
                return self._load(conn, receipt_id)
        except Exception as e:
            self.logger.error(f"Failed to get receipt {receipt_id}: {str(e)}")
            raise

    def find_all(self, receipt_filter: Optional[ReceiptFilter] = None, page: int = 1,
                 page_size: int = DEFAULT_PAGE_SIZE) -> PaginatedResult[Receipt]:
        """Search receipts based on filters.

        Args:
            receipt_filter: Search criteria
            page: 1-based page number
            page_size: Receipts per page

        Returns:
            PaginatedResult with the page of receipts and the total count
        """
        _check_page(page, page_size)
        where, params = self._where(receipt_filter or ReceiptFilter())
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(f"SELECT COUNT(*) FROM receipts{where}", params)
                total = cursor.fetchone()[0]

                cursor.execute(f"""
                    SELECT * FROM receipts{where}
                    ORDER BY purchase_date IS NULL, purchase_date DESC, created_at DESC, id
                    LIMIT ? OFFSET ?
                """, params + [page_size, (page - 1) * page_size])
                rows = cursor.fetchall()
                items = self._items_for(conn, [row["id"] for row in rows])

                receipts = [self._row_to_receipt(row, items.get(row["id"], [])) for row in rows]
                return PaginatedResult[Receipt].build(receipts, total, page, page_size)

        except Exception as e:
            self.logger.error(f"Failed to search receipts: {str(e)}")
            raise

    def update(self, receipt_id: str, updates: ReceiptUpdate) -> Optional[Receipt]:
        """Update an existing receipt's header fields.

        Args:
            receipt_id: ID of the receipt to update
            updates: Fields to update

        Returns:
            Updated receipt, or None if it does not exist
        """
        changes = updates.model_dump(exclude_unset=True)
        try:
            with self.get_connection() as conn:
                existing = self._load(conn, receipt_id)
                if existing is None:
                    self.logger.warning(f"Receipt {receipt_id} not found for update")
                    return None
                if not changes:
                    return existing

                # Validate the merged record before writing it
                merged = existing.model_dump()
                merged.update(changes)
                try:
                    Receipt.model_validate(merged)
                except ValueError as e:
                    raise InputValidationError(f"Invalid update for receipt {receipt_id}: {e}") from e

                assignments = ", ".join(f"{field} = ?" for field in changes)
                values = [_to_db(value) for value in changes.values()] + [receipt_id]
                conn.execute(f"UPDATE receipts SET {assignments} WHERE id = ?", values)
                conn.commit()
                self.logger.info(f"Updated receipt {receipt_id}")
                return self._load(conn, receipt_id)

        except Exception as e:
            self.logger.error(f"Failed to update receipt {receipt_id}: {str(e)}")
            raise

    def delete(self, receipt_id: str) -> bool:
        """Delete a receipt by ID; its line items cascade.

        Returns:
            True if deletion was successful, False if receipt not found
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("DELETE FROM receipts WHERE id = ?", (receipt_id,))
                rows_affected = cursor.rowcount
                conn.commit()

                if rows_affected > 0:
                    self.logger.info(f"Deleted receipt {receipt_id}")
                    return True
                self.logger.warning(f"Receipt {receipt_id} not found for deletion")
                return False

        except Exception as e:
            self.logger.error(f"Failed to delete receipt {receipt_id}: {str(e)}")
            raise

    @staticmethod
    def _where(receipt_filter: ReceiptFilter) -> Tuple[str, List[Any]]:
        conditions = []
        params: List[Any] = []

        if receipt_filter.merchant_id:
            conditions.append("merchant_id = ?")
            params.append(receipt_filter.merchant_id)
        if receipt_filter.start_date:
            conditions.append("purchase_date >= ?")
            params.append(receipt_filter.start_date.isoformat())
        if receipt_filter.end_date:
            conditions.append("purchase_date <= ?")
            params.append(receipt_filter.end_date.isoformat())
        if receipt_filter.min_amount is not None:
            conditions.append("total >= ?")
            params.append(float(receipt_filter.min_amount))
        if receipt_filter.max_amount is not None:
            conditions.append("total <= ?")
            params.append(float(receipt_filter.max_amount))
        if receipt_filter.search:
            pattern = f"%{receipt_filter.search.strip()}%"
            conditions.append("""(merchant_name LIKE ? OR EXISTS (
                SELECT 1 FROM line_items li
                WHERE li.receipt_id = receipts.id AND (li.name LIKE ? OR li.clean_name LIKE ?)))""")
            params.extend([pattern, pattern, pattern])

        where = " WHERE " + " AND ".join(conditions) if conditions else ""
        return where, params

    def _load(self, conn: sqlite3.Connection, receipt_id: str) -> Optional[Receipt]:
        row = conn.execute("SELECT * FROM receipts WHERE id = ?", (receipt_id,)).fetchone()
        if row is None:
            return None
        items = self._items_for(conn, [receipt_id])
        return self._row_to_receipt(row, items.get(receipt_id, []))

    @staticmethod
    def _items_for(conn: sqlite3.Connection, receipt_ids: List[str]) -> Dict[str, List[LineItem]]:
        if not receipt_ids:
            return {}
        placeholders = ", ".join("?" for _ in receipt_ids)
        rows = conn.execute(
            f"SELECT * FROM line_items WHERE receipt_id IN ({placeholders}) "
            f"ORDER BY receipt_id, position",
            receipt_ids,
        ).fetchall()

        items: Dict[str, List[LineItem]] = {}
        for row in rows:
            items.setdefault(row["receipt_id"], []).append(LineItem(
                id=row["id"],
                receipt_id=row["receipt_id"],
                name=row["name"],
                clean_name=row["clean_name"],
                quantity=_decimal(row["quantity"]),
                unit=row["unit"],
                unit_price=_decimal(row["unit_price"]),
                total_price=_decimal(row["total_price"]),
                confidence=row["confidence"],
                category=row["category"],
                taxonomy_id=row["taxonomy_id"],
                product_id=row["product_id"],
                barcode=row["barcode"],
                discount=_decimal(row["discount"]),
            ))
        return items

    @staticmethod
    def _row_to_receipt(row: sqlite3.Row, items: List[LineItem]) -> Receipt:
        """Convert database row to Receipt object.

        Args:
            row: SQLite row object
            items: Line items of the receipt, in order

        Returns:
            Receipt object
        """
        return Receipt(
            id=row["id"],
            merchant_id=row["merchant_id"],
            merchant_name=row["merchant_name"],
            purchase_date=_date(row["purchase_date"]),
            total=_decimal(row["total"]),
            currency=row["currency"],
            status=row["status"],
            items=items,
            ocr_confidence=row["ocr_confidence"],
            created_at=_timestamp(row["created_at"]),
            updated_at=_timestamp(row["updated_at"]),
        )


class SQLiteMerchantRepository(_SQLiteRepository, MerchantRepository):
    """Merchant repository on SQLite."""

    def create(self, merchant: Merchant) -> Merchant:
        try:
            with self.get_connection() as conn:
                conn.execute("""
                    INSERT INTO merchants (id, name, display_name, category, patterns, logo_url)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    merchant.id,
                    merchant.name,
                    merchant.display_name,
                    merchant.category.value,
                    json.dumps(merchant.patterns, ensure_ascii=False),
                    merchant.logo_url,
                ))
                conn.commit()
                self.logger.info(f"Added merchant {merchant.id}")
                return self._load(conn, merchant.id)
        except Exception as e:
            self.logger.error(f"Failed to add merchant {merchant.id}: {str(e)}")
            raise

    def find_by_id(self, merchant_id: str) -> Optional[Merchant]:
        with self.get_connection() as conn:
            return self._load(conn, merchant_id)

    def find_all(self, search: Optional[str] = None, page: int = 1,
                 page_size: int = DEFAULT_PAGE_SIZE) -> PaginatedResult[Merchant]:
        _check_page(page, page_size)
        where, params = "", []
        if search:
            where = " WHERE name LIKE ? OR display_name LIKE ?"
            params = [f"%{search.strip()}%"] * 2
        with self.get_connection() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM merchants{where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM merchants{where} ORDER BY id LIMIT ? OFFSET ?",
                params + [page_size, (page - 1) * page_size],
            ).fetchall()
            merchants = [self._row_to_merchant(row) for row in rows]
            return PaginatedResult[Merchant].build(merchants, total, page, page_size)

    def update(self, merchant_id: str, patterns: List[str]) -> Optional[Merchant]:
        try:
            with self.get_connection() as conn:
                cursor = conn.execute("UPDATE merchants SET patterns = ? WHERE id = ?",
                                      (json.dumps(list(patterns), ensure_ascii=False), merchant_id))
                conn.commit()
                if cursor.rowcount == 0:
                    self.logger.warning(f"Merchant {merchant_id} not found for update")
                    return None
                self.logger.info(f"Updated patterns of merchant {merchant_id}")
                return self._load(conn, merchant_id)
        except Exception as e:
            self.logger.error(f"Failed to update merchant {merchant_id}: {str(e)}")
            raise

    def delete(self, merchant_id: str) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM merchants WHERE id = ?", (merchant_id,))
            conn.commit()
            return cursor.rowcount > 0

    def _load(self, conn: sqlite3.Connection, merchant_id: str) -> Optional[Merchant]:
        row = conn.execute("SELECT * FROM merchants WHERE id = ?", (merchant_id,)).fetchone()
        return self._row_to_merchant(row) if row else None

    @staticmethod
    def _row_to_merchant(row: sqlite3.Row) -> Merchant:
        return Merchant(
            id=row["id"],
            name=row["name"],
            display_name=row["display_name"],
            category=row["category"],
            patterns=json.loads(row["patterns"] or "[]"),
            logo_url=row["logo_url"],
            created_at=_timestamp(row["created_at"]),
        )


class SQLiteProductRepository(_SQLiteRepository, ProductRepository):
    """Product repository on SQLite. Stores the normalized matching key."""

    def create(self, product: Product) -> Product:
        normalized = product.normalized_name or normalize_product_name(product.name)
        try:
            with self.get_connection() as conn:
                conn.execute("""
                    INSERT INTO products (id, name, category, barcode, normalized_name)
                    VALUES (?, ?, ?, ?, ?)
                """, (product.id, product.name, product.category, product.barcode, normalized))
                conn.commit()
                self.logger.info(f"Added product {product.id}")
                return self._load(conn, "id", product.id)
        except Exception as e:
            self.logger.error(f"Failed to add product {product.id}: {str(e)}")
            raise

    def find_by_id(self, product_id: str) -> Optional[Product]:
        with self.get_connection() as conn:
            return self._load(conn, "id", product_id)

    def find_by_barcode(self, barcode: str) -> Optional[Product]:
        with self.get_connection() as conn:
            return self._load(conn, "barcode", barcode)

    def find_all(self, search: Optional[str] = None, page: int = 1,
                 page_size: int = DEFAULT_PAGE_SIZE) -> PaginatedResult[Product]:
        _check_page(page, page_size)
        where, params = "", []
        if search:
            where = " WHERE name LIKE ? OR normalized_name LIKE ?"
            params = [f"%{search.strip()}%", f"%{normalize_product_name(search)}%"]
        with self.get_connection() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM products{where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM products{where} ORDER BY name, id LIMIT ? OFFSET ?",
                params + [page_size, (page - 1) * page_size],
            ).fetchall()
            products = [self._row_to_product(row) for row in rows]
            return PaginatedResult[Product].build(products, total, page, page_size)

    def list_all(self) -> List[Product]:
        with self.get_connection() as conn:
            rows = conn.execute("SELECT * FROM products ORDER BY id").fetchall()
            return [self._row_to_product(row) for row in rows]

    def update(self, product: Product) -> Optional[Product]:
        normalized = normalize_product_name(product.name)
        try:
            with self.get_connection() as conn:
                cursor = conn.execute("""
                    UPDATE products SET name = ?, category = ?, barcode = ?, normalized_name = ?
                    WHERE id = ?
                """, (product.name, product.category, product.barcode, normalized, product.id))
                conn.commit()
                if cursor.rowcount == 0:
                    self.logger.warning(f"Product {product.id} not found for update")
                    return None
                return self._load(conn, "id", product.id)
        except Exception as e:
            self.logger.error(f"Failed to update product {product.id}: {str(e)}")
            raise

    def delete(self, product_id: str) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM products WHERE id = ?", (product_id,))
            conn.commit()
            return cursor.rowcount > 0

    def _load(self, conn: sqlite3.Connection, column: str, value: str) -> Optional[Product]:
        row = conn.execute(f"SELECT * FROM products WHERE {column} = ?", (value,)).fetchone()
        return self._row_to_product(row) if row else None

    @staticmethod
    def _row_to_product(row: sqlite3.Row) -> Product:
        return Product(
            id=row["id"],
            name=row["name"],
            category=row["category"],
            barcode=row["barcode"],
            normalized_name=row["normalized_name"],
            created_at=_timestamp(row["created_at"]),
        )


class SQLiteProductPriceRepository(_SQLiteRepository, ProductPriceRepository):
    """Price observation repository on SQLite."""

    def create(self, price: ProductPrice) -> ProductPrice:
        price_id = price.id or _new_id()
        try:
            with self.get_connection() as conn:
                conn.execute("""
                    INSERT INTO product_prices (id, product_id, merchant_id, price, observed_on, source)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (price_id, price.product_id, price.merchant_id, _to_db(price.price),
                      price.observed_on.isoformat(), price.source.value))
                conn.commit()
                return self._load(conn, price_id)
        except Exception as e:
            self.logger.error(f"Failed to add price for product {price.product_id}: {str(e)}")
            raise

    def find_by_id(self, price_id: str) -> Optional[ProductPrice]:
        with self.get_connection() as conn:
            return self._load(conn, price_id)

    def find_by_product(self, product_id: str) -> List[ProductPrice]:
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM product_prices WHERE product_id = ? ORDER BY observed_on, id",
                (product_id,),
            ).fetchall()
            return [self._row_to_price(row) for row in rows]

    def find_all(self, product_id: Optional[str] = None, merchant_id: Optional[str] = None,
                 page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> PaginatedResult[ProductPrice]:
        _check_page(page, page_size)
        conditions, params = [], []
        if product_id:
            conditions.append("product_id = ?")
            params.append(product_id)
        if merchant_id:
            conditions.append("merchant_id = ?")
            params.append(merchant_id)
        where = " WHERE " + " AND ".join(conditions) if conditions else ""

        with self.get_connection() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM product_prices{where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM product_prices{where} ORDER BY observed_on DESC, id "
                f"LIMIT ? OFFSET ?",
                params + [page_size, (page - 1) * page_size],
            ).fetchall()
            prices = [self._row_to_price(row) for row in rows]
            return PaginatedResult[ProductPrice].build(prices, total, page, page_size)

    def update(self, price: ProductPrice) -> Optional[ProductPrice]:
        if not price.id:
            raise InputValidationError("Price observation id is required for update")
        with self.get_connection() as conn:
            cursor = conn.execute("""
                UPDATE product_prices
                SET product_id = ?, merchant_id = ?, price = ?, observed_on = ?, source = ?
                WHERE id = ?
            """, (price.product_id, price.merchant_id, _to_db(price.price),
                  price.observed_on.isoformat(), price.source.value, price.id))
            conn.commit()
            if cursor.rowcount == 0:
                return None
            return self._load(conn, price.id)

    def delete(self, price_id: str) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM product_prices WHERE id = ?", (price_id,))
            conn.commit()
            return cursor.rowcount > 0

    def _load(self, conn: sqlite3.Connection, price_id: str) -> Optional[ProductPrice]:
        row = conn.execute("SELECT * FROM product_prices WHERE id = ?", (price_id,)).fetchone()
        return self._row_to_price(row) if row else None

    @staticmethod
    def _row_to_price(row: sqlite3.Row) -> ProductPrice:
        return ProductPrice(
            id=row["id"],
            product_id=row["product_id"],
            merchant_id=row["merchant_id"],
            price=_decimal(row["price"]),
            observed_on=_date(row["observed_on"]),
            source=row["source"],
        )

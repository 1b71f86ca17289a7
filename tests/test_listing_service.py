"""Tests for the listing service and its coordination with the asset store."""

from decimal import Decimal
from unittest.mock import patch

import pytest
from conftest import DESK, JPEG_BYTES, PNG_BYTES, identity_for

from marketplace.exceptions import (
    DependencyError,
    NotFoundError,
    NotFoundOrUnauthorizedError,
    ValidationError,
)
from marketplace.models.listing import Listing
from marketplace.schemas.listing import ImageUpload, ListingFilter
from marketplace.services.assets import LocalAssetStore
from marketplace.services.auth import register_user
from marketplace.services.listing_service import ListingService, parse_price


@pytest.fixture
def store(tmp_path):
    return LocalAssetStore(tmp_path / "uploads", "http://cdn.test")


@pytest.fixture
def service(db, store):
    return ListingService(db, store)


@pytest.fixture
def seller(db):
    return identity_for(register_user(db, "Seller", "seller@example.com", "password123"))


@pytest.fixture
def stranger(db):
    return identity_for(register_user(db, "Stranger", "stranger@example.com", "password123"))


def png(name="desk.png"):
    return ImageUpload(data=PNG_BYTES, content_type="image/png", filename=name)


def stored_blobs(store):
    return sorted(p.name for p in (store.root / "images").iterdir())


class TestParsePrice:
    """Tests for price parsing."""

    def test_accepts_integer_text(self):
        assert parse_price("1500") == Decimal("1500.00")

    def test_rounds_to_cents(self):
        assert parse_price("19.995") == Decimal("20.00")
        assert parse_price(" 0.1 ") == Decimal("0.10")

    def test_zero_is_allowed(self):
        assert parse_price("0") == Decimal("0.00")

    @pytest.mark.parametrize(
        "value",
        ["-1", "-0.01", "NaN", "nan", "Infinity", "abc", "", True]
        + ["1e30", "1" + "0" * 30, "1e999999999"],
    )
    def test_rejects_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_price(value)

    def test_rejects_too_large(self):
        with pytest.raises(ValidationError):
            parse_price("100000000")

    def test_upper_bound_rounds_before_check(self):
        assert parse_price("99999999.994") == Decimal("99999999.99")
        with pytest.raises(ValidationError):
            parse_price("99999999.995")


class TestCreate:
    """Tests for creating listings."""

    def test_creates_unsold_listing(self, service, seller):
        product = service.create_listing(seller, DESK)

        assert product.sold is False
        assert product.price == 1500
        assert product.image_reference is None
        assert product.seller_id == seller.id
        assert product.seller_name == "Seller"

    def test_image_reference_is_resolved_url(self, service, seller, store, db):
        product = service.create_listing(seller, DESK, png())

        row = db.query(Listing).filter(Listing.id == product.id).one()
        assert row.image_reference.startswith("images/")
        assert product.image_reference == f"http://cdn.test/uploads/{row.image_reference}"
        assert store.exists(row.image_reference)

    @pytest.mark.parametrize("missing", list(DESK))
    def test_missing_field_writes_nothing(self, service, seller, store, db, missing):
        fields = {k: v for k, v in DESK.items() if k != missing}

        with pytest.raises(ValidationError):
            service.create_listing(seller, fields, png())

        assert db.query(Listing).count() == 0
        assert stored_blobs(store) == []

    def test_negative_price_writes_nothing(self, service, seller, store, db):
        with pytest.raises(ValidationError):
            service.create_listing(seller, {**DESK, "price": "-1"}, png())

        assert db.query(Listing).count() == 0
        assert stored_blobs(store) == []

    def test_disallowed_content_type_stores_nothing(self, service, seller, store, db):
        image = ImageUpload(data=b"<svg/>", content_type="image/svg+xml", filename="x.svg")

        with pytest.raises(ValidationError):
            service.create_listing(seller, DESK, image)

        assert db.query(Listing).count() == 0
        assert stored_blobs(store) == []

    def test_store_failure_writes_no_row(self, service, seller, store, db):
        with patch.object(store, "_write", side_effect=OSError("disk full")):
            with pytest.raises(DependencyError):
                service.create_listing(seller, DESK, png())

        assert db.query(Listing).count() == 0

    def test_insert_failure_removes_stored_image(self, service, seller, store):
        with patch.object(service.repository, "add", side_effect=DependencyError()):
            with pytest.raises(DependencyError):
                service.create_listing(seller, DESK, png())

        assert stored_blobs(store) == []


class TestRead:
    """Tests for browsing listings."""

    def test_list_newest_first(self, service, seller):
        first = service.create_listing(seller, DESK)
        second = service.create_listing(seller, {**DESK, "title": "Chair"})

        ids = [p.id for p in service.list_listings()]
        assert ids.index(second.id) < ids.index(first.id)

    def test_filter_by_seller_and_sold(self, service, seller, stranger):
        mine = service.create_listing(seller, DESK)
        service.create_listing(stranger, DESK)
        service.mark_sold(seller, mine.id)

        result = service.list_listings(ListingFilter(seller_id=seller.id, sold=True))
        assert [p.id for p in result] == [mine.id]

    def test_filter_left_unchanged(self, service, seller):
        service.create_listing(seller, DESK)
        filters = ListingFilter(category="Furniture")

        assert len(service.list_listings(filters)) == 1
        assert filters.category == "Furniture"
        assert type(filters.category) is str

    def test_get_missing(self, service):
        with pytest.raises(NotFoundError):
            service.get_listing(12345)


class TestUpdate:
    """Tests for updating listings."""

    def test_partial_update_keeps_other_fields(self, service, seller):
        product = service.create_listing(seller, DESK)

        updated = service.update_listing(seller, product.id, {"price": "900", "title": None})

        assert updated.price == 900
        assert updated.title == "Desk"
        assert updated.description == "Wooden desk"

    def test_rejects_negative_price(self, service, seller, db):
        product = service.create_listing(seller, DESK)

        with pytest.raises(ValidationError):
            service.update_listing(seller, product.id, {"price": "-3"})

        assert service.get_listing(product.id).price == 1500

    def test_replacing_image_deletes_old_after_update(self, service, seller, store, db):
        product = service.create_listing(seller, DESK, png())
        old_reference = db.query(Listing).one().image_reference

        image = ImageUpload(data=JPEG_BYTES, content_type="image/jpeg", filename="desk.jpg")
        updated = service.update_listing(seller, product.id, {}, image)

        db.expire_all()
        new_reference = db.query(Listing).one().image_reference
        assert new_reference != old_reference
        assert updated.image_reference == store.resolve_url(new_reference)
        assert store.read(new_reference) == JPEG_BYTES
        assert not store.exists(old_reference)
        with pytest.raises(FileNotFoundError):
            store.read(old_reference)

    def test_failed_update_keeps_old_image(self, service, seller, store, db):
        product = service.create_listing(seller, DESK, png())
        old_reference = db.query(Listing).one().image_reference

        image = ImageUpload(data=JPEG_BYTES, content_type="image/jpeg", filename="desk.jpg")
        with patch.object(service.repository, "update_owned", side_effect=DependencyError()):
            with pytest.raises(DependencyError):
                service.update_listing(seller, product.id, {}, image)

        # New image cleaned up, old one still referenced and present
        assert stored_blobs(store) == [old_reference.split("/")[1]]
        assert db.query(Listing).one().image_reference == old_reference

    def test_old_image_kept_until_update_succeeds(self, service, seller, store, db):
        product = service.create_listing(seller, DESK, png())
        old_reference = db.query(Listing).one().image_reference
        calls = []

        original_update = service.repository.update_owned

        def record_update(*args, **kwargs):
            calls.append(("update", store.exists(old_reference)))
            return original_update(*args, **kwargs)

        with patch.object(service.repository, "update_owned", side_effect=record_update):
            service.update_listing(seller, product.id, {}, png("new.png"))

        assert calls == [("update", True)]
        assert not store.exists(old_reference)

    def test_not_owner(self, service, seller, stranger, store):
        product = service.create_listing(seller, DESK)

        with pytest.raises(NotFoundOrUnauthorizedError):
            service.update_listing(stranger, product.id, {"title": "Stolen"}, png())

        assert service.get_listing(product.id).title == "Desk"
        assert stored_blobs(store) == []


class TestMarkSold:
    """Tests for toggling the sold flag."""

    def test_toggles_each_call(self, service, seller):
        product = service.create_listing(seller, DESK)
        assert service.get_listing(product.id).sold is False

        assert service.mark_sold(seller, product.id).sold is True
        assert service.get_listing(product.id).sold is True

        assert service.mark_sold(seller, product.id).sold is False
        assert service.get_listing(product.id).sold is False

    def test_keeps_other_fields(self, service, seller):
        product = service.create_listing(seller, DESK)
        sold = service.mark_sold(seller, product.id)
        assert sold.title == "Desk"
        assert sold.price == 1500

    def test_not_owner(self, service, seller, stranger):
        product = service.create_listing(seller, DESK)

        with pytest.raises(NotFoundOrUnauthorizedError):
            service.mark_sold(stranger, product.id)

        assert service.get_listing(product.id).sold is False


class TestDelete:
    """Tests for deleting listings."""

    def test_deletes_row_and_image(self, service, seller, store, db):
        product = service.create_listing(seller, DESK, png())

        service.delete_listing(seller, product.id)

        assert db.query(Listing).count() == 0
        assert stored_blobs(store) == []

    def test_image_already_absent(self, service, seller, store, db):
        product = service.create_listing(seller, DESK, png())
        reference = db.query(Listing).one().image_reference
        (store.root / reference).unlink()

        service.delete_listing(seller, product.id)

        assert db.query(Listing).count() == 0

    def test_image_delete_failure_still_removes_row(self, service, seller, store, db):
        product = service.create_listing(seller, DESK, png())

        with patch.object(store, "_remove", side_effect=PermissionError("read-only")):
            service.delete_listing(seller, product.id)

        assert db.query(Listing).count() == 0

    def test_not_owner(self, service, seller, stranger, store, db):
        product = service.create_listing(seller, DESK, png())

        with pytest.raises(NotFoundOrUnauthorizedError):
            service.delete_listing(stranger, product.id)

        assert db.query(Listing).count() == 1
        assert len(stored_blobs(store)) == 1

    def test_missing(self, service, seller):
        with pytest.raises(NotFoundOrUnauthorizedError):
            service.delete_listing(seller, 4242)

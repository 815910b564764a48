"""
Unit tests for BlockRegistry
"""
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.core.errors import (AlreadyDispatchedError, BlobError, EncodingError,
                             NotFoundError, StorageError, ValidationError)
from app.models import OUT_OF_STOCK, BlockStatus, StoneBlock
from app.services.blob_store import LocalBlobStore
from app.services.block_registry import BlockRegistry
from app.services.dispatch_service import DispatchService


def _blob_files(blob_store: LocalBlobStore):
    return sorted(p.name for p in blob_store.root.iterdir())


class TestRegister:
    """Registration and validation"""

    def test_register_block(self, registry: BlockRegistry, blob_store, block_fields, image_bytes):
        photo = image_bytes()
        block = registry.register(block_fields(), photo, image_extension="jpg")

        assert block.id is not None
        assert block.status == BlockStatus.REGISTERED.value
        assert block.name == "Black Galaxy Slab"
        assert block.price == 120.5
        assert block.stock_quantity == 4
        assert block.grade == "Standard"
        assert block.image_ref.endswith(".jpg")
        assert blob_store.retrieve(block.image_ref) == photo
        assert blob_store.exists(block.identity_artifact_ref)
        assert block.created_at is not None

    def test_tokens_unique_across_registrations(self, registry: BlockRegistry, block_fields, image_bytes):
        blocks = [registry.register(block_fields(name=f"Block {i}"), image_bytes()) for i in range(15)]

        tokens = {b.identity_token for b in blocks}
        artifacts = {b.identity_artifact_ref for b in blocks}
        assert len(tokens) == 15
        assert len(artifacts) == 15

    def test_fields_are_trimmed(self, registry: BlockRegistry, block_fields, image_bytes):
        block = registry.register(block_fields(name="  Tan Brown  ", grade="  Premium "), image_bytes())
        assert block.name == "Tan Brown"
        assert block.grade == "Premium"

    def test_empty_stock_quantity_means_absent(self, registry: BlockRegistry, block_fields, image_bytes):
        block = registry.register(block_fields(stock_quantity=""), image_bytes())
        assert block.stock_quantity is None

    def test_typed_values_accepted(self, registry: BlockRegistry, block_fields, image_bytes):
        block = registry.register(block_fields(price=99, stock_quantity=0), image_bytes())
        assert block.price == 99.0
        assert block.stock_quantity == 0

    @pytest.mark.parametrize("field_name,value", [
        ("name", ""),
        ("name", "   "),
        ("dimensions", None),
        ("category", ""),
        ("subcategory", ""),
        ("price", "abc"),
        ("price", "-1"),
        ("price", "inf"),
        ("price", "nan"),
        ("price_unit", ""),
        ("stock_availability", ""),
        ("stock_quantity", "-3"),
        ("stock_quantity", "many"),
    ])
    def test_invalid_field_rejected(self, registry, blob_store, block_fields, image_bytes, field_name, value):
        with pytest.raises(ValidationError) as exc_info:
            registry.register(block_fields(**{field_name: value}), image_bytes())

        assert exc_info.value.field == field_name
        assert registry.list() == []
        assert _blob_files(blob_store) == []

    @pytest.mark.parametrize("label", ["Out of Stock", "out of stock", "OUT OF STOCK"])
    def test_out_of_stock_reserved_for_dispatch(self, registry, block_fields, image_bytes, label):
        with pytest.raises(ValidationError) as exc_info:
            registry.register(block_fields(stock_availability=label), image_bytes())
        assert exc_info.value.field == "stock_availability"

    @pytest.mark.parametrize("photo", [None, b""])
    def test_image_required(self, registry: BlockRegistry, blob_store, block_fields, photo):
        with pytest.raises(ValidationError) as exc_info:
            registry.register(block_fields(), photo)
        assert exc_info.value.field == "image"
        assert _blob_files(blob_store) == []

    def test_oversized_image_rejected(self, registry: BlockRegistry, block_fields, monkeypatch):
        monkeypatch.setattr(registry.settings, "max_image_bytes", 10)
        with pytest.raises(ValidationError) as exc_info:
            registry.register(block_fields(), b"x" * 11)
        assert exc_info.value.field == "image"

    def test_encoding_failure_persists_nothing(self, registry, blob_store, block_fields, image_bytes, monkeypatch):
        def failing_render(payload):
            raise EncodingError("Identity artifact could not be rendered")

        monkeypatch.setattr(registry.issuer, "render", failing_render)
        with pytest.raises(EncodingError):
            registry.register(block_fields(), image_bytes())

        assert registry.list() == []
        assert _blob_files(blob_store) == []

    def test_image_store_failure_releases_artifact(self, registry, blob_store, block_fields, image_bytes, monkeypatch):
        original_store = blob_store.store

        def store(data, extension="", salt=""):
            if extension == "jpg":
                raise BlobError("Failed to store blob")
            return original_store(data, extension=extension, salt=salt)

        monkeypatch.setattr(blob_store, "store", store)
        with pytest.raises(BlobError):
            registry.register(block_fields(), image_bytes(), image_extension="jpg")

        assert registry.list() == []
        assert _blob_files(blob_store) == []

    def test_storage_failure_releases_blobs(self, registry, db: Session, blob_store, block_fields, image_bytes, monkeypatch):
        def failing_commit():
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db, "commit", failing_commit)
        with pytest.raises(StorageError):
            registry.register(block_fields(), image_bytes())
        monkeypatch.undo()

        assert db.query(StoneBlock).count() == 0
        assert _blob_files(blob_store) == []

    def test_failed_registration_keeps_other_blocks_photo(
        self, registry, db: Session, blob_store, block_fields, image_bytes, monkeypatch
    ):
        """Identical photo bytes owned by another block survive a failed registration"""
        photo = image_bytes("same-photo")
        existing = registry.register(block_fields(), photo)

        def failing_commit():
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db, "commit", failing_commit)
        with pytest.raises(StorageError):
            registry.register(block_fields(name="Second"), photo)
        monkeypatch.undo()

        assert blob_store.exists(existing.image_ref)
        assert blob_store.exists(existing.identity_artifact_ref)

    def test_default_grade_from_settings(self, registry: BlockRegistry, block_fields, image_bytes, monkeypatch):
        monkeypatch.setattr(registry.settings, "default_grade", "Commercial")
        block = registry.register(block_fields(grade=""), image_bytes())
        assert block.grade == "Commercial"


class TestLookup:
    """list / get / get_by_token"""

    def test_list_includes_dispatched(self, registry: BlockRegistry, block_factory):
        block_factory(name="Available")
        block_factory(name="Shipped", status=BlockStatus.DISPATCHED.value, stock_availability=OUT_OF_STOCK)

        names = {b.name for b in registry.list()}
        assert names == {"Available", "Shipped"}

    def test_get(self, registry: BlockRegistry, block_factory):
        block = block_factory()
        assert registry.get(block.id).id == block.id
        assert registry.get(str(block.id)).id == block.id

    def test_get_not_found(self, registry: BlockRegistry):
        with pytest.raises(NotFoundError):
            registry.get(uuid4())

    def test_get_invalid_id(self, registry: BlockRegistry):
        with pytest.raises(ValidationError) as exc_info:
            registry.get("not-a-uuid")
        assert exc_info.value.field == "id"

    def test_get_by_token(self, registry: BlockRegistry, block_factory):
        block = block_factory()
        assert registry.get_by_token(block.identity_token).id == block.id
        assert registry.get_by_token(f"  {block.identity_token} ").id == block.id

    @pytest.mark.parametrize("token", ["unknown-token", "", "   ", None])
    def test_get_by_token_not_found(self, registry: BlockRegistry, block_factory, token):
        block_factory()
        with pytest.raises(NotFoundError):
            registry.get_by_token(token)


class TestUpdate:
    """Editing descriptive fields and available states"""

    def test_update_fields(self, registry: BlockRegistry, block_factory):
        block = block_factory()
        token = block.identity_token

        updated = registry.update(block.id, {"name": "Kashmir Gold", "price": "150", "stock_quantity": "7"})

        assert updated.name == "Kashmir Gold"
        assert updated.price == 150.0
        assert updated.stock_quantity == 7
        assert updated.identity_token == token

    def test_move_to_warehouse_and_back(self, registry: BlockRegistry, block_factory):
        block = block_factory()

        assert registry.update(block.id, {"status": "In Warehouse"}).status == "In Warehouse"
        assert registry.update(block.id, {"status": "Registered"}).status == "Registered"

    def test_status_dispatched_not_editable(self, registry: BlockRegistry, block_factory):
        block = block_factory()
        with pytest.raises(ValidationError) as exc_info:
            registry.update(block.id, {"status": "Dispatched"})
        assert exc_info.value.field == "status"

    def test_out_of_stock_rejected(self, registry: BlockRegistry, block_factory):
        block = block_factory()
        with pytest.raises(ValidationError):
            registry.update(block.id, {"stock_availability": "Out of Stock"})

    @pytest.mark.parametrize("field_name", ["identity_token", "identity_artifact_ref", "image_ref", "id"])
    def test_identity_fields_not_editable(self, registry: BlockRegistry, block_factory, field_name):
        block = block_factory()
        with pytest.raises(ValidationError) as exc_info:
            registry.update(block.id, {field_name: "something"})
        assert exc_info.value.field == field_name

    def test_required_field_cannot_be_cleared(self, registry: BlockRegistry, block_factory):
        block = block_factory()
        with pytest.raises(ValidationError) as exc_info:
            registry.update(block.id, {"name": None})
        assert exc_info.value.field == "name"

    def test_empty_update_returns_block(self, registry: BlockRegistry, block_factory):
        block = block_factory(name="Unchanged")
        assert registry.update(block.id, {}).name == "Unchanged"

    def test_update_missing_block(self, registry: BlockRegistry):
        with pytest.raises(NotFoundError):
            registry.update(uuid4(), {"name": "Ghost"})

    def test_update_dispatched_block(self, registry: BlockRegistry, db: Session, block_factory):
        block = block_factory()
        DispatchService(db).dispatch(block.identity_token)

        with pytest.raises(AlreadyDispatchedError):
            registry.update(block.id, {"status": "In Warehouse", "stock_availability": "In Stock"})

        block = registry.get(block.id)
        assert block.status == BlockStatus.DISPATCHED.value
        assert block.stock_availability == OUT_OF_STOCK


class TestRemove:
    """Removal and blob cleanup"""

    def test_remove_releases_blobs(self, registry: BlockRegistry, blob_store, block_fields, image_bytes):
        block = registry.register(block_fields(), image_bytes())
        artifact_ref, image_ref = block.identity_artifact_ref, block.image_ref

        result = registry.remove(block.id)

        assert result.complete
        assert set(result.released) == {artifact_ref, image_ref}
        assert not blob_store.exists(artifact_ref)
        assert not blob_store.exists(image_ref)
        with pytest.raises(NotFoundError):
            registry.get(result.block_id)

    def test_identical_photos_get_separate_blobs(self, registry: BlockRegistry, blob_store, block_fields, image_bytes):
        photo = image_bytes("same-photo")
        first = registry.register(block_fields(name="First"), photo, image_extension="jpg")
        second = registry.register(block_fields(name="Second"), photo, image_extension="jpg")
        assert first.image_ref != second.image_ref

        registry.remove(first.id)
        assert not blob_store.exists(first.image_ref)
        assert blob_store.retrieve(second.image_ref) == photo

    def test_photo_of_uncommitted_registration_survives_removal(
        self, registry: BlockRegistry, db: Session, blob_store, block_fields, image_bytes
    ):
        """Removal lands between a registration's photo write and its commit"""
        photo = image_bytes("same-photo")
        doomed = registry.register(block_fields(name="Doomed"), photo, image_extension="jpg")

        data = registry.validate_registration(block_fields(name="Newcomer"))
        identity = registry.issuer.issue(data)
        image_ref = blob_store.store(photo, extension="jpg", salt=identity.token)

        registry.remove(doomed.id)

        db.add(StoneBlock(
            identity_token=identity.token,
            identity_artifact_ref=identity.artifact_ref,
            image_ref=image_ref,
            status=BlockStatus.REGISTERED.value,
            **data,
        ))
        db.commit()

        newcomer = registry.get_by_token(identity.token)
        assert blob_store.retrieve(newcomer.image_ref) == photo
        assert not blob_store.exists(doomed.image_ref)

    def test_remove_missing_block(self, registry: BlockRegistry):
        with pytest.raises(NotFoundError):
            registry.remove(uuid4())

    def test_remove_twice(self, registry: BlockRegistry, block_factory):
        block = block_factory()
        registry.remove(block.id)
        with pytest.raises(NotFoundError):
            registry.remove(block.id)

    def test_release_failure_does_not_undo_removal(
        self, registry: BlockRegistry, db: Session, blob_store, block_fields, image_bytes, monkeypatch
    ):
        block = registry.register(block_fields(), image_bytes())
        block_id = block.id
        refs = {block.identity_artifact_ref, block.image_ref}

        def failing_release(reference):
            raise BlobError("Failed to release blob", reference=reference)

        monkeypatch.setattr(blob_store, "release", failing_release)
        result = registry.remove(block_id)

        assert not result.complete
        assert set(result.release_failures) == refs
        assert db.query(StoneBlock).filter(StoneBlock.id == block_id).first() is None

    def test_remove_dispatched_block(self, registry: BlockRegistry, db: Session, block_factory):
        block = block_factory()
        DispatchService(db).dispatch(block.identity_token)

        result = registry.remove(block.id)
        assert result.block_id == block.id


def test_removed_block_token_no_longer_resolves(registry: BlockRegistry, blob_store, block_fields, image_bytes):
    block = registry.register(block_fields(), image_bytes())
    token, refs = block.identity_token, [block.identity_artifact_ref, block.image_ref]

    registry.remove(block.id)

    with pytest.raises(NotFoundError):
        registry.get_by_token(token)
    for reference in refs:
        with pytest.raises(NotFoundError):
            blob_store.retrieve(reference)

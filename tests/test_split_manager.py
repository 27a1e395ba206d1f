"""Tests for applying and undoing splits."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from pagesplit.errors import InvalidStateError, PageNotFoundError
from pagesplit.pages import Book, Crop, CropDecision, OriginalPage, SplitRightPage
from pagesplit.split_manager import PageSplitManager, canonical_order
from pagesplit.store import JsonPageStore, MemoryPageStore


def page_numbers(store: MemoryPageStore, book_id: str = "b1") -> dict[str, int]:
    return {p.id: p.page_number for p in store.find_pages(book_id)}


@pytest.fixture
def manager(store):
    return PageSplitManager(store)


class TestApplySplit:
    """Tests for splitting a page."""

    def test_split_middle_page(self, store, manager):
        """Splitting page 5 of 10 inserts page 6 and shifts the rest."""
        outcome = manager.apply_split("p5", CropDecision.from_ratio(50))

        assert outcome.total_pages == 11
        assert outcome.updated_page.page_number == 5
        assert outcome.updated_page.crop == Crop(0, 500)
        assert outcome.new_page.page_number == 6
        assert outcome.new_page.crop == Crop(500, 1000)
        assert outcome.new_page.split_from == "p5"

        numbers = page_numbers(store)
        assert [numbers[f"p{n}"] for n in range(6, 11)] == [7, 8, 9, 10, 11]
        assert sorted(numbers.values()) == list(range(1, 12))
        assert store.get_book("b1").pages_count == 11

    def test_new_page_shares_source(self, store, manager):
        """Both halves point at the uncropped scan."""
        outcome = manager.apply_split("p1", CropDecision.from_ratio(50))
        assert outcome.new_page.photo_original == "scan_01.jpg"
        assert outcome.updated_page.photo_original == "scan_01.jpg"

    def test_keep_right(self, manager):
        outcome = manager.apply_split("p3", CropDecision.from_ratio(45, side="right"))
        assert outcome.updated_page.crop == Crop(450, 1000)
        assert outcome.new_page.crop == Crop(0, 450)

    def test_split_last_page(self, store, manager):
        outcome = manager.apply_split("p10", CropDecision.from_ratio(50))
        assert outcome.new_page.page_number == 11
        assert outcome.total_pages == 11

    def test_resplit_adjusts_sibling(self, store, manager):
        """Splitting again moves the line instead of adding another page."""
        first = manager.apply_split("p5", CropDecision.from_ratio(50))
        second = manager.apply_split("p5", CropDecision.from_ratio(45))

        assert second.new_page.id == first.new_page.id
        assert second.new_page.crop == Crop(450, 1000)
        assert second.updated_page.crop == Crop(0, 450)
        assert second.total_pages == 11
        assert len(store.find_pages("b1")) == 11

    def test_split_generated_half(self, manager):
        """Generated halves cannot be split again."""
        outcome = manager.apply_split("p2", CropDecision.from_ratio(50))
        with pytest.raises(InvalidStateError):
            manager.apply_split(outcome.new_page.id, CropDecision.from_ratio(50))

    def test_page_without_photo(self, store, manager):
        store.insert_page(OriginalPage(id="blank", book_id="b1", page_number=11))
        with pytest.raises(InvalidStateError):
            manager.apply_split("blank", CropDecision.from_ratio(50))

    def test_missing_page(self, manager):
        with pytest.raises(PageNotFoundError) as exc_info:
            manager.apply_split("nope", CropDecision.from_ratio(50))
        assert exc_info.value.page_id == "nope"

    def test_failed_renumber_rolls_back(self, store):
        """A failure part way through leaves the book untouched."""

        class FailingStore(MemoryPageStore):
            def bulk_renumber(self, book_id, numbers):
                raise RuntimeError("disk full")

        failing = FailingStore()
        failing.save_book(Book(id="b1", pages_count=2))
        for page in store.find_pages("b1")[:2]:
            failing.insert_page(page)

        with pytest.raises(RuntimeError):
            PageSplitManager(failing).apply_split("p1", CropDecision.from_ratio(50))

        assert len(failing.find_pages("b1")) == 2
        assert failing.get_page("p1").crop is None

    def test_concurrent_splits(self, store, manager):
        """Parallel splits of one book still end up numbered 1..N."""
        with ThreadPoolExecutor(max_workers=5) as pool:
            list(pool.map(
                lambda n: manager.apply_split(f"p{n}", CropDecision.from_ratio(50)),
                [1, 3, 5, 7, 9],
            ))

        numbers = page_numbers(store)
        assert sorted(numbers.values()) == list(range(1, 16))
        for n in [1, 3, 5, 7, 9]:
            child = store.find_split_child(f"p{n}")
            assert numbers[child.id] == numbers[f"p{n}"] + 1


class TestUndoSplit:
    """Tests for resetting a split."""

    def test_round_trip(self, store, manager):
        """Split then reset restores the original numbering."""
        before = page_numbers(store)
        manager.apply_split("p5", CropDecision.from_ratio(50))

        outcome = manager.undo_split("p5")

        assert outcome.renumbered_count == 10
        assert outcome.page.crop is None
        assert page_numbers(store) == before
        assert store.get_book("b1").pages_count == 10

    def test_reset_from_right_half(self, store, manager):
        """Either half can be used to reset."""
        split = manager.apply_split("p5", CropDecision.from_ratio(50))

        outcome = manager.undo_split(split.new_page.id)

        assert outcome.page.id == "p5"
        assert outcome.deleted_sibling_id == split.new_page.id
        assert store.get_page(split.new_page.id) is None

    def test_reset_unsplit_page(self, manager):
        with pytest.raises(InvalidStateError):
            manager.undo_split("p4")

    def test_reset_missing_page(self, manager):
        with pytest.raises(PageNotFoundError):
            manager.undo_split("nope")

    def test_reset_twice(self, manager):
        """The second reset finds nothing to undo."""
        manager.apply_split("p5", CropDecision.from_ratio(50))
        manager.undo_split("p5")
        with pytest.raises(InvalidStateError):
            manager.undo_split("p5")

    def test_orphaned_right_half(self, store, manager):
        """A right half whose original is gone becomes a plain page."""
        store.insert_page(
            SplitRightPage(
                id="orphan", book_id="b1", page_number=11, photo="scan_11.jpg",
                crop=Crop(500, 1000), split_from="ghost",
            )
        )

        outcome = manager.undo_split("orphan")

        assert outcome.deleted_sibling_id is None
        page = store.get_page("orphan")
        assert isinstance(page, OriginalPage)
        assert page.crop is None
        assert page.page_number == 11


class TestBatchSplit:
    """Tests for splitting many pages at once."""

    def test_batch(self, store, manager):
        """Valid items split, bad ones are reported and skipped."""
        result = manager.batch_split([("p2", 500), ("p7", 480), ("missing", 500), ("p3", 0)])

        assert result.split_count == 2
        assert set(result.skipped) == {"missing", "p3"}
        assert result.total_pages == 12

        numbers = page_numbers(store)
        assert sorted(numbers.values()) == list(range(1, 13))
        assert numbers["p7"] == 8
        assert numbers[store.find_split_child("p7").id] == 9

    def test_batch_overlap(self, store, manager):
        """Batch splits overlap both halves by 10."""
        manager.batch_split([("p2", 500)])
        assert store.get_page("p2").crop == Crop(0, 510)
        assert store.find_split_child("p2").crop == Crop(490, 1000)

    def test_batch_writes_once_per_step(self, store):
        """Each split and the closing renumber are committed as one write each."""

        class CountingStore(MemoryPageStore):
            writes = 0

            def _persist(self, book_id):
                self.writes += 1

        counting = CountingStore()
        counting.save_book(Book(id="b1", pages_count=10))
        for page in store.find_pages("b1"):
            counting.insert_page(page)
        counting.writes = 0

        PageSplitManager(counting).batch_split([("p2", 500), ("p5", 500)])

        assert counting.writes == 3

    def test_batch_failed_renumber_rolls_back(self, store):
        """If the closing renumber fails, the old page numbers stay."""

        class FailingStore(MemoryPageStore):
            fail_saves = False

            def save_book(self, book):
                if self.fail_saves:
                    raise RuntimeError("disk full")
                super().save_book(book)

        failing = FailingStore()
        failing.save_book(Book(id="b1", pages_count=10))
        for page in store.find_pages("b1"):
            failing.insert_page(page)
        failing.fail_saves = True

        with pytest.raises(RuntimeError):
            PageSplitManager(failing).batch_split([("p2", 500)])

        numbers = page_numbers(failing)
        assert numbers["p3"] == 3
        assert numbers["p10"] == 10

    def test_batch_skips_generated_half(self, manager):
        outcome = manager.apply_split("p1", CropDecision.from_ratio(50))
        result = manager.batch_split([(outcome.new_page.id, 500), ("p4", 500)])
        assert result.split_count == 1
        assert outcome.new_page.id in result.skipped


class TestRenumber:
    """Tests for canonical renumbering."""

    def test_heals_stale_numbers(self, store, manager):
        """A right half with a stale number is put back after its original."""
        outcome = manager.apply_split("p5", CropDecision.from_ratio(50))
        store.bulk_renumber("b1", {outcome.new_page.id: 99, "p9": 3})

        total = manager.renumber("b1")

        numbers = page_numbers(store)
        assert total == 11
        assert sorted(numbers.values()) == list(range(1, 12))
        assert numbers[outcome.new_page.id] == numbers["p5"] + 1

    def test_renumber_idempotent(self, store, manager):
        manager.apply_split("p5", CropDecision.from_ratio(50))
        before = page_numbers(store)
        manager.renumber("b1")
        assert page_numbers(store) == before

    def test_canonical_order(self):
        """Children follow their parent; roots go by page number."""
        a = OriginalPage(id="a", book_id="b", page_number=2, photo="x", crop=Crop(0, 500))
        b = OriginalPage(id="b", book_id="b", page_number=1, photo="x")
        child = SplitRightPage(id="c", book_id="b", page_number=1, photo="x", crop=Crop(500, 1000), split_from="a")
        assert [p.id for p in canonical_order([a, child, b])] == ["b", "a", "c"]


class TestStores:
    """Tests for page stores."""

    def test_atomic_rollback(self, store):
        with pytest.raises(RuntimeError):
            with store.atomic("b1"):
                store.delete_page("p1")
                raise RuntimeError("abort")
        assert store.get_page("p1") is not None

    def test_records_are_copies(self, store):
        """Changing a returned page does not change the store."""
        page = store.get_page("p1")
        page.page_number = 42
        assert store.get_page("p1").page_number == 1

    def test_json_store_persists(self, tmp_path):
        """Split state survives reopening the store."""
        store = JsonPageStore(tmp_path)
        store.save_book(Book(id="b1", title="Atalanta"))
        for n in range(1, 4):
            store.insert_page(OriginalPage(id=f"p{n}", book_id="b1", page_number=n, photo=f"{n}.jpg"))
        outcome = PageSplitManager(store).apply_split("p2", CropDecision.from_ratio(50))

        reopened = JsonPageStore(tmp_path)

        assert reopened.get_book("b1").pages_count == 4
        child = reopened.get_page(outcome.new_page.id)
        assert isinstance(child, SplitRightPage)
        assert child.split_from == "p2"
        assert child.page_number == 3
        assert reopened.get_page("p2").crop == Crop(0, 500)
        assert (tmp_path / "b1.json").exists()

    def test_json_store_rejects_corrupt_file(self, tmp_path):
        (tmp_path / "broken.json").write_text("{not json")
        with pytest.raises(ValueError):
            JsonPageStore(tmp_path)

from datetime import datetime

import pytest

from goodmeh.batch import (
    InsertReviewImagesParams,
    InsertReviewRepliesParams,
    InsertReviewsParams,
    InsertUsersParams,
)
from goodmeh.db import NoRowsError, connect
from goodmeh.models import RequestStatus
from goodmeh.queries import Queries

SCHEMA = [
    "CREATE TABLE field_category (id INTEGER PRIMARY KEY, name TEXT NOT NULL)",
    """CREATE TABLE field (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL,
        category_id INTEGER NOT NULL, UNIQUE (name, category_id))""",
    """CREATE TABLE place (id TEXT PRIMARY KEY, name TEXT NOT NULL,
        rating REAL NOT NULL DEFAULT 0, weighted_rating REAL NOT NULL DEFAULT 0,
        user_rating_count INTEGER NOT NULL DEFAULT 0, summary TEXT, last_scraped TIMESTAMP,
        image_url TEXT, recompute_stats BOOLEAN NOT NULL DEFAULT FALSE, primary_type TEXT,
        business_summary TEXT, price_range INTEGER, earliest_review_date TIMESTAMP,
        lat REAL, lng REAL)""",
    """CREATE TABLE place_field (place_id TEXT NOT NULL, field_id INTEGER,
        PRIMARY KEY (place_id, field_id))""",
    """CREATE TABLE request (place_id TEXT NOT NULL, created_at TIMESTAMP NOT NULL,
        status INTEGER NOT NULL, failed BOOLEAN NOT NULL DEFAULT FALSE, batch_job_id TEXT,
        PRIMARY KEY (place_id, status))""",
    """CREATE TABLE "user" (id TEXT PRIMARY KEY, name TEXT NOT NULL, photo_uri TEXT,
        review_count INTEGER NOT NULL DEFAULT 0, photo_count INTEGER NOT NULL DEFAULT 0,
        rating_count INTEGER NOT NULL DEFAULT 0, is_local_guide BOOLEAN NOT NULL DEFAULT FALSE,
        long_review_count INTEGER NOT NULL DEFAULT 0, score INTEGER)""",
    """CREATE TABLE review (id TEXT PRIMARY KEY, user_id TEXT NOT NULL, rating INTEGER NOT NULL,
        text TEXT NOT NULL, created_at TIMESTAMP NOT NULL, weight INTEGER NOT NULL DEFAULT 0,
        place_id TEXT NOT NULL, price_range INTEGER, summary TEXT, business_summary TEXT)""",
    """CREATE TABLE review_reply (review_id TEXT PRIMARY KEY, text TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL)""",
    """CREATE TABLE review_image (review_id TEXT NOT NULL, image_url TEXT NOT NULL,
        PRIMARY KEY (review_id, image_url))""",
]


@pytest.fixture
def queries():
    db = connect("sqlite://")
    for statement in SCHEMA:
        db.execute(statement)
    yield Queries(db)
    db.close()


def _add_place(queries, place_id="p1", name="Cafe"):
    queries.insert_place(place_id, name, 12, "img.png", False, "cafe", 1.5, 103.8)


def _run(batch_results):
    errors = []
    batch_results.exec(lambda index, error: errors.append(error))
    return errors


def _seed_reviews(queries):
    _add_place(queries)
    assert _run(queries.insert_users([InsertUsersParams(id="u1", name="Ann", is_local_guide=True)])) == [None]
    reviews = [
        InsertReviewsParams("r1", "u1", 5, "short", datetime(2024, 1, 1, 9, 0, 0), "p1"),
        InsertReviewsParams("r2", "u1", 3, "x" * 60, datetime(2024, 3, 1, 9, 0, 0), "p1", 2),
        InsertReviewsParams("r3", "u1", 4, "y" * 51, datetime(2024, 2, 1, 9, 0, 0), "p1"),
    ]
    assert _run(queries.insert_reviews(reviews)) == [None, None, None]
    replies = [InsertReviewRepliesParams("r2", "thanks", datetime(2024, 3, 2, 9, 0, 0))]
    assert _run(queries.insert_review_replies(replies)) == [None]
    images = [
        InsertReviewImagesParams("r1", "a.jpg"),
        InsertReviewImagesParams("r3", "c.jpg"),
        InsertReviewImagesParams("r2", "b.jpg"),
    ]
    assert _run(queries.insert_review_images(images)) == [None, None, None]


def test_field_categories_and_insert_field_ignores_duplicates(queries):
    queries.db.execute("INSERT INTO field_category (id, name) VALUES (1, 'Service'), (2, 'Dining')")
    categories = queries.get_field_categories()
    assert sorted((c.id, c.name) for c in categories) == [(1, "Service"), (2, "Dining")]
    queries.insert_field("Dine-in", 1)
    queries.insert_field("Dine-in", 1)
    queries.insert_field("Dine-in", 2)
    assert len(queries.db.fetch_all("SELECT name, category_id FROM field")) == 3


def test_insert_place_round_trip_and_upsert(queries):
    _add_place(queries)
    place = queries.get_place_by_id("p1")
    assert (place.id, place.name, place.user_rating_count) == ("p1", "Cafe", 12)
    assert place.lat == 1.5 and place.lng == 103.8
    assert place.recompute_stats is False
    assert place.last_scraped is None
    queries.insert_place("p1", "Cafe Two", 20, None, True, None, None, None)
    updated = queries.get_place_by_id("p1")
    assert (updated.name, updated.user_rating_count, updated.image_url) == ("Cafe Two", 20, None)
    assert updated.recompute_stats is True


def test_get_place_by_id_missing_raises(queries):
    with pytest.raises(NoRowsError):
        queries.get_place_by_id("nowhere")


def test_after_review_insert_marks_scraped(queries):
    _add_place(queries)
    queries.after_review_insert("p1")
    place = queries.get_place_by_id("p1")
    assert isinstance(place.last_scraped, datetime)
    assert place.recompute_stats is True


def test_update_place_summary(queries):
    _add_place(queries)
    queries.update_place_summary("p1", "Lovely coffee")
    assert queries.get_place_by_id("p1").summary == "Lovely coffee"


def test_place_names_and_random_places(queries):
    for place_id in ("a", "b", "c"):
        _add_place(queries, place_id, f"name-{place_id}")
    names = {p.id: p.name for p in queries.get_place_names()}
    assert names == {"a": "name-a", "b": "name-b", "c": "name-c"}
    places = queries.get_random_places(2)
    assert len(places) == 2
    assert {p.id for p in places} <= {"a", "b", "c"}


def test_insert_place_field_links_existing_field(queries):
    _add_place(queries)
    queries.insert_field("Wi-Fi", 7)
    queries.insert_place_field("p1", "Wi-Fi", 7)
    queries.insert_place_field("p1", "Wi-Fi", 7)
    field_id = queries.db.fetch_one("SELECT id FROM field WHERE name = 'Wi-Fi'")[0]
    assert queries.db.fetch_all("SELECT place_id, field_id FROM place_field") == [("p1", field_id)]


def test_request_lifecycle(queries):
    queries.insert_request_or_set_failed_false("p1", RequestStatus.SCRAPING, None)
    request = queries.get_request("p1", RequestStatus.SCRAPING)
    assert (request.place_id, request.status, request.failed) == ("p1", 0, False)
    assert isinstance(request.created_at, datetime)

    queries.set_request_failed("p1", RequestStatus.SCRAPING, True)
    assert queries.get_request("p1", RequestStatus.SCRAPING).failed is True

    queries.insert_request_or_set_failed_false("p1", RequestStatus.SCRAPING, None)
    assert queries.get_request("p1", RequestStatus.SCRAPING).failed is False

    with pytest.raises(NoRowsError):
        queries.get_request("p1", RequestStatus.SUMMARISING)

    queries.delete_request("p1", RequestStatus.SCRAPING)
    with pytest.raises(NoRowsError):
        queries.get_request("p1", RequestStatus.SCRAPING)


def test_request_keeps_batch_job_id(queries):
    queries.insert_request_or_set_failed_false("p1", RequestStatus.SUMMARISING_INDIVIDUAL_REVIEWS, "job-1")
    request = queries.get_request("p1", RequestStatus.SUMMARISING_INDIVIDUAL_REVIEWS)
    assert request.batch_job_id == "job-1"
    assert request.status == RequestStatus.SUMMARISING_INDIVIDUAL_REVIEWS


def test_get_place_reviews_newest_first_with_replies(queries):
    _seed_reviews(queries)
    rows = queries.get_place_reviews("p1", 10, 0)
    assert [row.review.id for row in rows] == ["r2", "r3", "r1"]
    assert rows[0].reply is not None
    assert (rows[0].reply.review_id, rows[0].reply.text) == ("r2", "thanks")
    assert rows[0].review.price_range == 2
    assert rows[1].reply is None
    assert rows[0].user.name == "Ann" and rows[0].user.is_local_guide is True
    assert rows[2].review.created_at == datetime(2024, 1, 1, 9, 0, 0)


def test_get_place_reviews_pagination(queries):
    _seed_reviews(queries)
    first = queries.get_place_reviews("p1", 2, 0)
    second = queries.get_place_reviews("p1", 2, 2)
    assert [r.review.id for r in first + second] == ["r2", "r3", "r1"]
    assert queries.get_place_reviews("other", 10, 0) == []


def test_get_review_image_urls_grouped_and_sorted(queries):
    _seed_reviews(queries)
    assert _run(queries.insert_review_images([InsertReviewImagesParams("r1", "a2.jpg")])) == [None]
    groups = queries.get_review_image_urls(["r3", "r1", "missing"])
    assert [g.review_id for g in groups] == ["r1", "r3"]
    assert sorted(groups[0].image_urls) == ["a.jpg", "a2.jpg"]
    assert groups[1].image_urls == ["c.jpg"]
    assert queries.get_review_image_urls([]) == []


def test_get_place_image_urls_ordered_by_review_date(queries):
    _seed_reviews(queries)
    assert queries.get_place_image_urls("p1", 10, 0) == ["b.jpg", "c.jpg", "a.jpg"]
    assert queries.get_place_image_urls("p1", 1, 1) == ["c.jpg"]


def test_get_reviews_with_enough_text(queries):
    _seed_reviews(queries)
    texts = queries.get_reviews_with_enough_text("p1")
    assert sorted(texts) == sorted(["x" * 60, "y" * 51])


def test_transaction_rolls_back_on_error(queries):
    with pytest.raises(ValueError):
        with queries.transaction() as tx:
            _add_place(tx, "temp")
            assert tx.get_place_by_id("temp").name == "Cafe"
            raise ValueError("abort")
    with pytest.raises(NoRowsError):
        queries.get_place_by_id("temp")


def test_transaction_commits(queries):
    with queries.transaction() as tx:
        _add_place(tx, "kept", "Kept")
    assert queries.get_place_by_id("kept").name == "Kept"


def test_with_tx_binds_to_given_database(queries):
    bound = queries.with_tx(queries.db)
    _add_place(bound, "via-bound", "Bound")
    assert queries.get_place_by_id("via-bound").name == "Bound"
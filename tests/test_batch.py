from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from goodmeh.batch import (
    BatchAlreadyClosedError,
    BatchResults,
    InsertReviewImagesParams,
    InsertReviewRepliesParams,
    InsertReviewsParams,
    InsertUsersParams,
    insert_review_images,
    insert_review_replies,
    insert_reviews,
    insert_users,
)
from goodmeh.db import connect

SCHEMA = [
    """CREATE TABLE "user" (
        id TEXT PRIMARY KEY, name TEXT NOT NULL, photo_uri TEXT,
        review_count INTEGER NOT NULL, photo_count INTEGER NOT NULL,
        rating_count INTEGER NOT NULL, is_local_guide BOOLEAN NOT NULL)""",
    """CREATE TABLE review (
        id TEXT PRIMARY KEY, user_id TEXT NOT NULL, rating INTEGER NOT NULL,
        text TEXT NOT NULL, created_at TIMESTAMP NOT NULL, place_id TEXT NOT NULL,
        price_range INTEGER)""",
    """CREATE TABLE review_reply (
        review_id TEXT PRIMARY KEY, text TEXT NOT NULL, created_at TIMESTAMP NOT NULL)""",
    """CREATE TABLE review_image (
        review_id TEXT NOT NULL, image_url TEXT NOT NULL,
        PRIMARY KEY (review_id, image_url))""",
]

WHEN = datetime(2024, 1, 2, 3, 4, 5)


@pytest.fixture
def db(tmp_path):
    database = connect(f"sqlite:///{tmp_path / 'batch.db'}", 2)
    for statement in SCHEMA:
        database.execute(statement)
    yield database
    database.close()


def collect(results):
    outcomes = []
    results.exec(lambda index, error: outcomes.append((index, error)))
    return outcomes


def review(review_id, text="nice", price_range=None):
    return InsertReviewsParams(
        id=review_id, user_id="u1", rating=5, text=text,
        created_at=WHEN, place_id="p1", price_range=price_range,
    )


def test_insert_users_reports_success_per_item(db):
    users = [InsertUsersParams(id="u1", name="Ann"), InsertUsersParams(id="u2", name="Bob", is_local_guide=True)]
    outcomes = collect(insert_users(db, users))
    assert outcomes == [(0, None), (1, None)]
    assert db.fetch_all('SELECT id, name FROM "user" ORDER BY id') == [("u1", "Ann"), ("u2", "Bob")]


def test_insert_users_upserts(db):
    insert_users(db, [InsertUsersParams(id="u1", name="Ann", review_count=1)]).exec()
    insert_users(db, [InsertUsersParams(id="u1", name="Anna", review_count=4)]).exec()
    assert db.fetch_all('SELECT name, review_count FROM "user"') == [("Anna", 4)]


def test_insert_reviews_upserts_and_keeps_price_range(db):
    insert_reviews(db, [review("r1", price_range=2)]).exec()
    insert_reviews(db, [review("r1", text="changed", price_range=2)]).exec()
    assert db.fetch_all("SELECT id, text, price_range FROM review") == [("r1", "changed", 2)]


def test_insert_review_images_ignores_duplicates(db):
    images = [
        InsertReviewImagesParams("r1", "a.jpg"),
        InsertReviewImagesParams("r1", "a.jpg"),
        InsertReviewImagesParams("r1", "b.jpg"),
    ]
    outcomes = collect(insert_review_images(db, images))
    assert [error for _, error in outcomes] == [None, None, None]
    assert db.fetch_all("SELECT image_url FROM review_image ORDER BY image_url") == [("a.jpg",), ("b.jpg",)]


def test_insert_review_replies_upserts_text(db):
    insert_review_replies(db, [InsertReviewRepliesParams("r1", "thanks", WHEN)]).exec()
    insert_review_replies(db, [InsertReviewRepliesParams("r1", "thank you", WHEN)]).exec()
    assert db.fetch_all("SELECT review_id, text FROM review_reply") == [("r1", "thank you")]


def test_failing_item_is_reported_and_others_still_run(db):
    outcomes = collect(insert_reviews(db, [review("r1"), review("r2", text=None), review("r3")]))
    assert [index for index, _ in outcomes] == [0, 1, 2]
    assert outcomes[0][1] is None and outcomes[2][1] is None
    assert isinstance(outcomes[1][1], IntegrityError)
    assert db.fetch_all("SELECT id FROM review ORDER BY id") == [("r1",), ("r3",)]


def test_exec_after_close_reports_closed_for_every_item(db):
    results = insert_users(db, [InsertUsersParams(id="u1", name="Ann"), InsertUsersParams(id="u2", name="Bob")])
    results.close()
    outcomes = collect(results)
    assert [index for index, _ in outcomes] == [0, 1]
    assert all(isinstance(error, BatchAlreadyClosedError) for _, error in outcomes)


def test_close_runs_pending_statements(db):
    insert_users(db, [InsertUsersParams(id="u1", name="Ann")]).close()
    assert db.fetch_all('SELECT id FROM "user"') == [("u1",)]


def test_close_raises_first_error(db):
    results = insert_reviews(db, [review("r1"), review("r2", text=None)])
    with pytest.raises(IntegrityError):
        results.close()
    assert db.fetch_all("SELECT id FROM review") == [("r1",)]


def test_second_exec_reports_closed(db):
    results = insert_users(db, [InsertUsersParams(id="u1", name="Ann")])
    assert collect(results) == [(0, None)]
    outcomes = collect(results)
    assert len(outcomes) == 1 and isinstance(outcomes[0][1], BatchAlreadyClosedError)


def test_empty_batch_never_calls_back(db):
    results = insert_review_images(db, [])
    assert len(results) == 0
    assert collect(results) == []


def test_batch_results_length_matches_params(db):
    results = BatchResults(db, "SELECT 1", [{}, {}, {}])
    assert len(results) == 3


def test_batch_already_closed_message():
    assert str(BatchAlreadyClosedError()) == "batch already closed"


def test_batch_inside_transaction_rolls_back(db):
    with pytest.raises(ValueError):
        with db.transaction() as tx:
            insert_users(tx, [InsertUsersParams(id="u1", name="Ann")]).exec()
            raise ValueError("abort")
    assert db.fetch_all('SELECT id FROM "user"') == []
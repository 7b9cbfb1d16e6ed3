from datetime import date, timedelta

import pytest

from conftest import TEST_SCHOOL_ID, auth_header
from services import library
from services.library import calculate_fine, return_book


LIBRARIAN = auth_header("librarian")


async def _book(client, copies=1, **overrides):
    body = {"title": "Pather Panchali", "title_bn": "পথের পাঁচালী", "author": "Bibhutibhushan", "total_copies": copies}
    body.update(overrides)
    response = await client.post("/api/library/books", json=body, headers=LIBRARIAN)
    assert response.status_code == 201, response.text
    return response.json()


async def _student(client, code="L-1", name="Sumaiya"):
    response = await client.post(
        "/api/students",
        json={"student_code": code, "name": name, "class_name": "Class 9"},
        headers=LIBRARIAN,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_calculate_fine_counts_only_overdue_days():
    due = date(2026, 3, 10)
    assert calculate_fine(due, due) == 0
    assert calculate_fine(due, due - timedelta(days=4)) == 0
    assert calculate_fine(due, due + timedelta(days=3)) == 15


@pytest.mark.asyncio
async def test_last_copy_cannot_be_lent_twice(integration_client):
    book = await _book(integration_client, copies=1)
    first_student = await _student(integration_client, "L-1", "Sumaiya")
    second_student = await _student(integration_client, "L-2", "Arif")

    first = await integration_client.post(
        "/api/library/borrow",
        json={"book_id": book["id"], "student_id": first_student["id"]},
        headers=LIBRARIAN,
    )
    assert first.status_code == 201
    assert first.json()["available_copies"] == 0
    assert first.json()["status"] == "active"
    expected_due = date.today() + timedelta(days=14)
    assert first.json()["due_date"] == expected_due.isoformat()

    second = await integration_client.post(
        "/api/library/borrow",
        json={"book_id": book["id"], "student_id": second_student["id"]},
        headers=LIBRARIAN,
    )
    assert second.status_code == 409
    assert second.json()["detail"] == "No copies available"
    assert second.json()["detail_bn"]

    borrowed = await integration_client.get("/api/library/borrowed", headers=LIBRARIAN)
    loans = borrowed.json()["loans"]
    assert len(loans) == 1
    assert loans[0]["student_name"] == "Sumaiya"
    assert loans[0]["book_title_bn"] == "পথের পাঁচালী"


@pytest.mark.asyncio
async def test_borrow_rejects_unknown_book_and_student(integration_client):
    book = await _book(integration_client)
    student = await _student(integration_client)

    missing_book = await integration_client.post(
        "/api/library/borrow",
        json={"book_id": "no-such-book", "student_id": student["id"]},
        headers=LIBRARIAN,
    )
    assert missing_book.status_code == 404

    missing_student = await integration_client.post(
        "/api/library/borrow",
        json={"book_id": book["id"], "student_id": "no-such-student"},
        headers=LIBRARIAN,
    )
    assert missing_student.status_code == 404

    past_due = await integration_client.post(
        "/api/library/borrow",
        json={"book_id": book["id"], "student_id": student["id"], "due_date": "2000-01-01"},
        headers=LIBRARIAN,
    )
    assert past_due.status_code == 422


@pytest.mark.asyncio
async def test_late_return_charges_fine_and_restores_copy(integration_client, session_maker):
    book = await _book(integration_client, copies=2)
    student = await _student(integration_client)
    due = date.today()

    borrowed = await integration_client.post(
        "/api/library/borrow",
        json={"book_id": book["id"], "student_id": student["id"], "due_date": due.isoformat()},
        headers=LIBRARIAN,
    )
    loan_id = borrowed.json()["id"]

    async with session_maker() as session:
        returned = await return_book(loan_id, session, school_id=TEST_SCHOOL_ID, returned_on=due + timedelta(days=3))
    assert returned["status"] == "returned"
    assert returned["fine"] == 15
    assert returned["return_date"] == (due + timedelta(days=3)).isoformat()

    again = await integration_client.post("/api/library/return", json={"loan_id": loan_id}, headers=LIBRARIAN)
    assert again.status_code == 409

    books = await integration_client.get("/api/library/books", headers=LIBRARIAN)
    assert books.json()["books"][0]["available_copies"] == 2

    stats = await integration_client.get("/api/library/stats", headers=LIBRARIAN)
    assert stats.json() == {
        "titles": 1,
        "total_copies": 2,
        "available_copies": 2,
        "borrowed": 0,
        "overdue": 0,
        "fines_collected": 15,
    }


@pytest.mark.asyncio
async def test_on_time_return_over_http(integration_client):
    book = await _book(integration_client)
    student = await _student(integration_client)
    borrowed = await integration_client.post(
        "/api/library/borrow",
        json={"book_id": book["id"], "student_id": student["id"]},
        headers=LIBRARIAN,
    )

    returned = await integration_client.post(
        "/api/library/return", json={"loan_id": borrowed.json()["id"]}, headers=LIBRARIAN
    )
    assert returned.status_code == 200
    assert returned.json()["fine"] == 0


@pytest.mark.asyncio
async def test_book_updates_respect_loans(integration_client):
    book = await _book(integration_client, copies=3)
    student = await _student(integration_client)
    await integration_client.post(
        "/api/library/borrow",
        json={"book_id": book["id"], "student_id": student["id"]},
        headers=LIBRARIAN,
    )

    shrink = await integration_client.patch(
        f"/api/library/books/{book['id']}", json={"total_copies": 2}, headers=LIBRARIAN
    )
    assert shrink.status_code == 200
    assert shrink.json()["available_copies"] == 1

    too_small = await integration_client.patch(
        f"/api/library/books/{book['id']}", json={"total_copies": 0}, headers=LIBRARIAN
    )
    assert too_small.status_code == 422

    blocked = await integration_client.delete(f"/api/library/books/{book['id']}", headers=LIBRARIAN)
    assert blocked.status_code == 409


@pytest.mark.asyncio
async def test_copy_count_change_keeps_loans_made_after_the_book_was_read(
    integration_client, session_maker, monkeypatch
):
    book = await _book(integration_client, copies=3)
    student = await _student(integration_client, "L-1", "Sumaiya")
    other_student = await _student(integration_client, "L-2", "Arif")
    original_load = library._load_book
    lent = []

    async def load_then_lend(book_id, school_id, db):
        loaded = await original_load(book_id, school_id, db)
        if not lent:
            lent.append(book_id)
            async with session_maker() as other:
                await library.borrow_book(book_id, student["id"], other, school_id=school_id)
        return loaded

    monkeypatch.setattr(library, "_load_book", load_then_lend)
    async with session_maker() as session:
        updated = await library.update_book(book["id"], {"total_copies": 5}, session, school_id=TEST_SCHOOL_ID)
    assert updated["total_copies"] == 5
    assert updated["available_copies"] == 4
    monkeypatch.setattr(library, "_load_book", original_load)

    await integration_client.post(
        "/api/library/borrow",
        json={"book_id": book["id"], "student_id": other_student["id"]},
        headers=LIBRARIAN,
    )
    below_loans = await integration_client.patch(
        f"/api/library/books/{book['id']}", json={"total_copies": 1}, headers=LIBRARIAN
    )
    assert below_loans.status_code == 409

    unchanged = await integration_client.get("/api/library/books", headers=LIBRARIAN)
    listed = next(item for item in unchanged.json()["books"] if item["id"] == book["id"])
    assert (listed["total_copies"], listed["available_copies"]) == (5, 3)


@pytest.mark.asyncio
async def test_books_are_scoped_to_school(integration_client):
    await _book(integration_client, title="Shesher Kobita")
    other = await integration_client.get(
        "/api/library/books", headers=auth_header("visitor", school_id="other-school")
    )
    assert other.json()["books"] == []

    search = await integration_client.get("/api/library/books?search=Shesher", headers=LIBRARIAN)
    assert len(search.json()["books"]) == 1

from datetime import timedelta

from app import create_app
from auth import hash_password
from loans import borrow_book
from models import Author, Book, Category, Publisher, User, db
from utils import utcnow

app = create_app({'SCHEDULER_ENABLED': False})

with app.app_context():
    # Reset the database
    db.drop_all()
    db.create_all()
    print("🔄 Database reset")

    # Insert Users
    users = [
        {"name": "Admin User", "email": "admin@example.com", "password": "admin12345", "role": "admin"},
        {"name": "Libby Rarian", "email": "librarian@example.com", "password": "librarian123", "role": "librarian"},
        {"name": "Student One", "email": "student1@example.com", "password": "student123", "role": "student"},
        {"name": "Student Two", "email": "student2@example.com", "password": "student123", "role": "student"}
    ]

    for u in users:
        db.session.add(User(name=u["name"], email=u["email"], password=hash_password(u["password"]), role=u["role"]))

    db.session.commit()
    print("✅ Users inserted")

    # Insert catalogue
    authors = {
        "John Zelle": Author(name="John Zelle", nationality="American"),
        "Miguel Grinberg": Author(name="Miguel Grinberg", nationality="Argentine"),
        "Robert C. Martin": Author(name="Robert C. Martin", nationality="American"),
    }
    publishers = {
        "Franklin, Beedle": Publisher(name="Franklin, Beedle", address="Portland, OR"),
        "O'Reilly": Publisher(name="O'Reilly", address="Sebastopol, CA", contact_info="orders@oreilly.com"),
        "Prentice Hall": Publisher(name="Prentice Hall", address="Upper Saddle River, NJ"),
    }
    programming = Category(name="Programming", description="Software development")
    categories = {
        "Programming": programming,
        "Web": Category(name="Web", description="Web development", parent=programming),
        "Software": Category(name="Software", description="Software craftsmanship", parent=programming),
    }
    db.session.add_all(list(authors.values()) + list(publishers.values()) + list(categories.values()))

    books = [
        {"title": "Python Programming", "author": "John Zelle", "publisher": "Franklin, Beedle",
         "isbn": "9781590282410", "category": "Programming", "total_copies": 5, "publication_year": 2017},
        {"title": "Flask Web Development", "author": "Miguel Grinberg", "publisher": "O'Reilly",
         "isbn": "9781491991732", "category": "Web", "total_copies": 3, "publication_year": 2018},
        {"title": "Clean Code", "author": "Robert C. Martin", "publisher": "Prentice Hall",
         "isbn": "9780132350884", "category": "Software", "total_copies": 2, "publication_year": 2008}
    ]

    for b in books:
        book = Book(
            title=b["title"],
            author=authors[b["author"]],
            publisher=publishers[b["publisher"]],
            isbn=b["isbn"],
            categories=[categories[b["category"]]],
            total_copies=b["total_copies"],
            available_copies=b["total_copies"],
            publication_year=b["publication_year"]
        )
        db.session.add(book)

    db.session.commit()
    print("✅ Books inserted")

    # Insert sample loans, one of them already overdue
    student = User.query.filter_by(email="student1@example.com").first()
    python_book = Book.query.filter_by(title="Python Programming").first()
    clean_code = Book.query.filter_by(title="Clean Code").first()

    borrow_book(student, python_book.book_id)
    print(f"✅ Borrow record inserted: {student.name} borrowed '{python_book.title}'")
    overdue = borrow_book(student, clean_code.book_id, now=utcnow() - timedelta(days=20))
    print(f"✅ Overdue borrow record inserted: '{clean_code.title}' was due {overdue.due_at:%Y-%m-%d}")

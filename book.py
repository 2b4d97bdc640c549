from __future__ import annotations


class Book:
    """Represents a single title in the catalog and its available copy count."""

    def __init__(self, title: str, author: str, id: int | None = None,
                 genre: str | None = None, sub_genre: str | None = None,
                 publisher: str | None = None, height: int | None = None,
                 quantity: int = 1, created_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.genre = genre
        self.sub_genre = sub_genre
        self.publisher = publisher
        self.height = height
        # Copies currently on the shelf, not the total owned
        self.quantity = quantity
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (#{self.id}, {self.quantity} available)"

    @property
    def is_available(self) -> bool:
        return self.quantity > 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "genre": self.genre,
            "sub_genre": self.sub_genre,
            "publisher": self.publisher,
            "height": self.height,
            "quantity": self.quantity,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            genre=data.get("genre"),
            sub_genre=data.get("sub_genre"),
            publisher=data.get("publisher"),
            height=data.get("height"),
            quantity=data.get("quantity", 1),
            created_at=data.get("created_at"),
        )

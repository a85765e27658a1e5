# -*- coding: utf-8 -*-

"""Model factories for use in testing."""

import factory


class AuthorFactory(factory.django.DjangoModelFactory):
    """A factory for generating Author records."""

    class Meta:
        model = "book_db.Author"

    name = factory.Faker("name")


class FormatFactory(factory.django.DjangoModelFactory):
    """A factory for generating book Format records."""

    class Meta:
        model = "book_db.Format"

    name = factory.Sequence(lambda n: f"Format {n}")
    active = True


class GenreFactory(factory.django.DjangoModelFactory):
    """A factory for generating Genre records."""

    class Meta:
        model = "book_db.Genre"

    name = factory.Sequence(lambda n: f"Genre {n:03d}")
    active = True


class BorrowerFactory(factory.django.DjangoModelFactory):
    """A factory for generating Borrower records."""

    class Meta:
        model = "book_db.Borrower"

    name = factory.Sequence(lambda n: f"Borrower {n}")
    email = factory.Faker("email")


class BookFactory(factory.django.DjangoModelFactory):
    """A factory for generating Book records."""

    class Meta:
        model = "book_db.Book"

    title = factory.Sequence(lambda n: f"Book {n}")
    author = factory.Faker("name")
    isbn = factory.Sequence(lambda n: f"978{n:010d}")
    publisher = factory.Faker("company")


class BookGenreFactory(factory.django.DjangoModelFactory):
    """A factory for linking books to genres."""

    class Meta:
        model = "book_db.BookGenre"

    book = factory.SubFactory(BookFactory)
    genre = factory.SubFactory(GenreFactory)

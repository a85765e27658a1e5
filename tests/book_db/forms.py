# -*- coding: utf-8 -*-

"""Forms for the library database."""

from form_processor.binding import ModelForm
from form_processor.fields import Field
from form_processor.forms import Form, validates


class BookForm(ModelForm):
    model = "book_db.Book"
    profile = {
        "required": {
            "title": {"type": "Text", "size": 100},
            "author": "Text",
            "isbn": "Text",
            "publisher": "Text",
        },
        "optional": [
            ("format", "Select"),
            ("genres", "Multiple"),
            ("authors", "Multiple"),
            ("borrower", "Select"),
            ("year", {"type": "PosInteger", "range_start": 1450, "range_end": 2100}),
            ("pages", "Integer"),
            ("price", "Money"),
            ("published", "Date"),
            ("borrowed_time", "DateTimeDMYHM"),
            ("comment", "TextArea"),
        ],
        "unique": {"isbn": "Duplicate ISBN number"},
    }

    @validates("pages")
    def check_pages(self, field: Field) -> None:
        if field.value < 1:
            field.add_error("A book must have at least one page")


class BorrowerForm(ModelForm):
    model = "book_db.Borrower"
    name_prefix = "borrower"
    profile = {
        "required": {
            "name": "Text",
            "email": "Email",
        },
        "optional": {
            "phone": "Text",
            "url": "URL",
            "books": {
                "type": "Multiple",
                "foreign_column": "id",
                "label_column": "title",
            },
        },
        "unique": {"name": "That name is already in our user directory"},
    }


class AddressForm(Form):
    profile = {
        "required": {"name": "Text"},
        "optional": [
            ("address", "Text"),
            ("city", "Text"),
            ("state", "Text"),
            ("zip", "Text"),
            ("subscribe", "Checkbox"),
            ("email", "Email"),
        ],
        "dependency": [
            ["address", "city", "state", "zip"],
            ["subscribe", "email"],
        ],
    }

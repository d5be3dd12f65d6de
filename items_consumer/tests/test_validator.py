from __future__ import annotations

import unittest

from items_consumer.errors import ValidationError
from items_consumer.models import Category
from items_consumer.validator import validate_event


class TestValidator(unittest.TestCase):
    def test_minimal_event_is_valid(self) -> None:
        ev = validate_event({"id": "a1", "name": "Chew Toy", "category": "toys"})
        self.assertEqual(ev.id, "a1")
        self.assertIs(ev.category, Category.toys)
        self.assertEqual(ev.to_fields(), {"id": "a1", "name": "Chew Toy", "category": "toys"})

    def test_unset_optional_fields_are_not_emitted(self) -> None:
        ev = validate_event({"id": "a1", "name": "Kibble", "category": "food", "description": "grain free"})
        fields = ev.to_fields()
        self.assertEqual(fields["description"], "grain free")
        self.assertNotIn("source", fields)
        self.assertNotIn("timestamp", fields)

    def test_extra_producer_fields_are_kept(self) -> None:
        ev = validate_event({"id": "a1", "name": "Kibble", "category": "food", "price": 12.5})
        self.assertEqual(ev.to_fields()["price"], 12.5)

    def test_missing_required_fields_are_all_reported(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            validate_event({"description": "orphan"})
        self.assertEqual(sorted(ctx.exception.fields), ["category", "id", "name"])
        self.assertEqual(ctx.exception.kind, "validation")

    def test_unknown_category_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            validate_event({"id": "a2", "category": "invalid"})
        self.assertEqual(sorted(ctx.exception.fields), ["category", "name"])

    def test_field_bounds(self) -> None:
        cases = [
            ({"id": "a", "name": "x" * 101, "category": "toys"}, "name"),
            ({"id": "a", "name": "   ", "category": "toys"}, "name"),
            ({"id": "a", "name": "", "category": "toys"}, "name"),
            ({"id": "a", "name": "ok", "category": "toys", "description": "d" * 501}, "description"),
            ({"id": "", "name": "ok", "category": "toys"}, "id"),
            ({"id": "a/b", "name": "ok", "category": "toys"}, "id"),
            ({"id": "..", "name": "ok", "category": "toys"}, "id"),
            ({"id": "__item__", "name": "ok", "category": "toys"}, "id"),
            ({"id": 123, "name": "ok", "category": "toys"}, "id"),
        ]
        for record, field in cases:
            with self.subTest(field=field, record=record):
                with self.assertRaises(ValidationError) as ctx:
                    validate_event(record)
                self.assertEqual(ctx.exception.fields, [field])

    def test_boundary_lengths_are_accepted(self) -> None:
        ev = validate_event({"id": "a", "name": "x" * 100, "category": "treats", "description": "d" * 500})
        self.assertEqual(len(ev.name), 100)

    def test_underscored_ids_that_are_not_reserved_are_accepted(self) -> None:
        for item_id in ("__", "___", "__a", "a__"):
            with self.subTest(item_id=item_id):
                self.assertEqual(validate_event({"id": item_id, "name": "ok", "category": "toys"}).id, item_id)


if __name__ == "__main__":
    unittest.main()

import os
import unittest
from datetime import date, datetime, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from taskhub.services.query_errors import ValidationError
from taskhub.services.query_fields import BUILTIN_FIELDS, FieldType
from taskhub.services.query_filters import (
    ME,
    Filter,
    FilterSet,
    InvalidValue,
    Operator,
    RelativeDate,
    coerce_value,
    filter_from_dict,
)


class OperatorParsingTests(unittest.TestCase):
    def test_wire_codes_round_trip(self):
        for op in Operator:
            self.assertIs(Operator.parse(op.value), op)

    def test_bang_alias_means_not_equals(self):
        self.assertIs(Operator.parse("!"), Operator.NOT_EQUALS)

    def test_unknown_code_is_none(self):
        self.assertIsNone(Operator.parse("=="))
        self.assertIsNone(Operator.parse(None))


class ValueCoercionTests(unittest.TestCase):
    def test_numbers_accept_strings_and_decimal_comma(self):
        self.assertEqual(coerce_value(FieldType.INTEGER, "42"), 42)
        self.assertAlmostEqual(coerce_value(FieldType.FLOAT, "3,14"), 3.14)

    def test_integer_rejects_fraction(self):
        with self.assertRaises(InvalidValue):
            coerce_value(FieldType.INTEGER, "1.5")

    def test_boolean_words(self):
        self.assertTrue(coerce_value(FieldType.BOOLEAN, "yes"))
        self.assertFalse(coerce_value(FieldType.BOOLEAN, "0"))
        with self.assertRaises(InvalidValue):
            coerce_value(FieldType.BOOLEAN, "maybe")

    def test_date_takes_date_part_of_datetime(self):
        self.assertEqual(coerce_value(FieldType.DATE, "2026-02-26T13:45:00+03:00"), date(2026, 2, 26))

    def test_datetime_keeps_date_only_literal_as_day(self):
        self.assertEqual(coerce_value(FieldType.DATETIME, "2026-02-26"), date(2026, 2, 26))

    def test_naive_datetime_becomes_utc(self):
        value = coerce_value(FieldType.DATETIME, "2026-02-26T10:15:00")
        self.assertEqual(value, datetime(2026, 2, 26, 10, 15, tzinfo=timezone.utc))

    def test_user_reference_accepts_me(self):
        self.assertEqual(coerce_value(FieldType.USER, "me"), ME)
        self.assertEqual(coerce_value(FieldType.USER, "7"), 7)
        with self.assertRaises(InvalidValue):
            coerce_value(FieldType.REFERENCE, "me")

    def test_reference_must_be_positive(self):
        with self.assertRaises(InvalidValue):
            coerce_value(FieldType.REFERENCE, "0")

    def test_integers_must_fit_the_column(self):
        self.assertEqual(coerce_value(FieldType.INTEGER, "2147483647"), 2147483647)
        for raw in ("2147483648", "-2147483649", 10**20):
            with self.assertRaises(InvalidValue):
                coerce_value(FieldType.INTEGER, raw)
        with self.assertRaises(InvalidValue):
            coerce_value(FieldType.REFERENCE, "99999999999")

    def test_floats_must_be_finite(self):
        for raw in ("nan", "inf", "-Infinity", "1e400", float("nan")):
            with self.assertRaises(InvalidValue):
                coerce_value(FieldType.FLOAT, raw)


class RelativeDateTests(unittest.TestCase):
    today = date(2026, 10, 14)  # Wednesday

    def test_today(self):
        self.assertEqual(RelativeDate.parse("today").bounds(self.today), (self.today, self.today))

    def test_this_week_is_monday_to_sunday(self):
        self.assertEqual(
            RelativeDate.parse("thisWeek").bounds(self.today),
            (date(2026, 10, 12), date(2026, 10, 18)),
        )

    def test_day_offsets(self):
        self.assertEqual(
            RelativeDate.parse("inLessThanDays:3").bounds(self.today),
            (self.today, date(2026, 10, 17)),
        )
        self.assertEqual(RelativeDate.parse("inMoreThanDays:3").bounds(self.today), (date(2026, 10, 18), None))
        self.assertEqual(
            RelativeDate.parse("lessThanDaysAgo:2").bounds(self.today),
            (date(2026, 10, 12), self.today),
        )
        self.assertEqual(RelativeDate.parse("moreThanDaysAgo:2").bounds(self.today), (None, date(2026, 10, 11)))

    def test_token_survives_parsing(self):
        self.assertEqual(RelativeDate.parse("inMoreThanDays:10").token, "inMoreThanDays:10")

    def test_malformed_token(self):
        for raw in ("yesterday", "inLessThanDays", "inLessThanDays:-1", "inLessThanDays:x"):
            with self.assertRaises(InvalidValue):
                RelativeDate.parse(raw)


class FilterValidationTests(unittest.TestCase):
    def test_valid_filter_has_no_errors(self):
        item = Filter("status_id", Operator.EQUALS, ("1", "2"))
        self.assertEqual(item.errors(BUILTIN_FIELDS["status_id"]), [])

    def test_values_are_normalized_to_strings(self):
        item = Filter("archived", Operator.EQUALS, (True,))
        self.assertEqual(item.values, ("true",))
        self.assertEqual(Filter("due_date", Operator.EQUALS, (date(2026, 1, 2),)).values, ("2026-01-02",))

    def test_unknown_field(self):
        errors = Filter("nope", Operator.EQUALS, ("1",)).errors(None)
        self.assertEqual(errors[0].field, "nope")

    def test_operator_not_allowed_for_type(self):
        errors = Filter("subject", Operator.GREATER_OR_EQUAL, ("a",)).errors(BUILTIN_FIELDS["subject"])
        self.assertIn("not allowed", errors[0].message)

    def test_arity_is_checked(self):
        self.assertTrue(Filter("assigned_to_id", Operator.IS_NULL, ("1",)).errors(BUILTIN_FIELDS["assigned_to_id"]))
        self.assertTrue(Filter("due_date", Operator.BETWEEN, ("2026-01-01",)).errors(BUILTIN_FIELDS["due_date"]))
        self.assertTrue(Filter("status_id", Operator.EQUALS, ()).errors(BUILTIN_FIELDS["status_id"]))
        self.assertTrue(Filter("subject", Operator.CONTAINS, ("a", "b")).errors(BUILTIN_FIELDS["subject"]))

    def test_unparseable_value(self):
        errors = Filter("done_ratio", Operator.GREATER_OR_EQUAL, ("lots",)).errors(BUILTIN_FIELDS["done_ratio"])
        self.assertEqual(errors[0].message, "invalid integer value")

    def test_between_bounds_must_be_ordered(self):
        item = Filter("due_date", Operator.BETWEEN, ("2026-03-01", "2026-02-01"))
        self.assertEqual(item.errors(BUILTIN_FIELDS["due_date"])[0].message, "range start is after range end")

    def test_relative_date_token_is_validated(self):
        self.assertEqual(Filter("due_date", Operator.RELATIVE_DATE, ("today",)).errors(BUILTIN_FIELDS["due_date"]), [])
        self.assertTrue(Filter("due_date", Operator.RELATIVE_DATE, ("soon",)).errors(BUILTIN_FIELDS["due_date"]))

    def test_open_and_closed_are_status_only(self):
        self.assertEqual(Filter("status_id", Operator.OPEN).errors(BUILTIN_FIELDS["status_id"]), [])
        self.assertIn("not allowed", Filter("type_id", Operator.CLOSED).errors(BUILTIN_FIELDS["type_id"])[0].message)
        self.assertTrue(Filter("status_id", Operator.OPEN, ("1",)).errors(BUILTIN_FIELDS["status_id"]))
        self.assertIs(Operator.parse("o"), Operator.OPEN)

    def test_non_scalar_values_are_rejected(self):
        for bad in (None, {"a": 1}, ["x"]):
            with self.assertRaises(ValidationError) as ctx:
                Filter("subject", Operator.EQUALS, (bad,))
            self.assertEqual(ctx.exception.fields, ["subject"])
        with self.assertRaises(ValidationError) as ctx:
            FilterSet.from_list([{"field": "subject", "operator": "~", "values": [{"a": 1}]}])
        self.assertEqual(ctx.exception.errors[0].message, "invalid value")

    def test_out_of_range_identifier_is_a_field_error(self):
        item = Filter("status_id", Operator.EQUALS, ("4294967296",))
        self.assertEqual(item.errors(BUILTIN_FIELDS["status_id"])[0].message, "invalid integer value")

    def test_me_is_kept_verbatim(self):
        item = Filter("assigned_to_id", Operator.EQUALS, ("me", "4"))
        self.assertEqual(item.to_dict()["values"], ["me", "4"])
        self.assertEqual(item.typed_values(BUILTIN_FIELDS["assigned_to_id"]), [ME, 4])


class FilterSetTests(unittest.TestCase):
    def test_add_replaces_same_field_in_place(self):
        filters = FilterSet(
            [
                Filter("status_id", Operator.EQUALS, ("1",)),
                Filter("subject", Operator.CONTAINS, ("bug",)),
            ]
        )
        filters.add_filter(Filter("status_id", Operator.NOT_EQUALS, ("3",)))
        self.assertEqual(filters.fields, ["status_id", "subject"])
        self.assertIs(filters.get("status_id").operator, Operator.NOT_EQUALS)
        self.assertEqual(len(filters), 2)

    def test_remove(self):
        filters = FilterSet([Filter("subject", Operator.CONTAINS, ("bug",))])
        self.assertTrue(filters.remove_filter("subject"))
        self.assertFalse(filters.remove_filter("subject"))
        self.assertNotIn("subject", filters)

    def test_serialization_keeps_order(self):
        raw = [
            {"field": "subject", "operator": "~", "values": ["x"]},
            {"field": "status_id", "operator": "!", "values": ["2"]},
            {"field": "due_date", "operator": "<>d", "values": ["2026-01-01", "2026-01-31"]},
        ]
        filters = FilterSet.from_list(raw)
        self.assertEqual([f["field"] for f in filters.to_list()], ["subject", "status_id", "due_date"])
        self.assertEqual(filters.to_list()[1]["operator"], "!=")
        self.assertEqual(FilterSet.from_list(filters.to_list()), filters)

    def test_malformed_entries_raise_validation_error(self):
        with self.assertRaises(ValidationError) as ctx:
            filter_from_dict({"field": "subject", "operator": "??"}, 0)
        self.assertEqual(ctx.exception.fields, ["subject"])
        with self.assertRaises(ValidationError):
            filter_from_dict({"operator": "="}, 3)
        with self.assertRaises(ValidationError):
            FilterSet.from_list({"field": "subject"})


if __name__ == "__main__":
    unittest.main()

"""Tests for the rx-caller CLI argument parsing."""

from __future__ import annotations

import pytest

from rx_caller.cli import build_parser


class TestAddPatientArguments:
    """Contact hours are limited to 0..23 at the command line."""

    def test_accepts_valid_hours(self):
        args = build_parser().parse_args(
            ["add-patient", "Erika", "+4915112345678", "--allowed-start", "9", "--allowed-end", "18"]
        )

        assert args.allowed_start == 9
        assert args.allowed_end == 18

    def test_hours_default_to_unrestricted(self):
        args = build_parser().parse_args(["add-patient", "Erika", "+4915112345678"])

        assert args.allowed_start is None
        assert args.allowed_end is None

    @pytest.mark.parametrize(
        "flag,value",
        [
            ("--allowed-start", "24"),
            ("--allowed-start", "-1"),
            ("--allowed-end", "25"),
        ],
    )
    def test_rejects_out_of_range_hour(self, flag, value):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["add-patient", "Erika", "+4915112345678", flag, value])


class TestScheduleArguments:
    def test_defaults(self):
        args = build_parser().parse_args(["schedule", "some-id", "2026-03-02T10:00:00"])

        assert args.retry_interval == 60
        assert args.max_attempts == 3

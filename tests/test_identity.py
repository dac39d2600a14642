"""Tests for the agent identity grammar."""

from __future__ import annotations

from pathlib import Path

import pytest

from deacon.errors import UnresolvedIdentityError
from deacon.identity import Identity, Role, parse_identity


TOWN = Path("/town")


class TestParseIdentity:
    """Tests for parse-once identity resolution."""

    def test_mayor(self):
        ident = parse_identity("mayor")
        assert ident.role == Role.MAYOR
        assert ident.rig == ""

    def test_witness(self):
        ident = parse_identity("wyvern-witness")
        assert ident == Identity(raw="wyvern-witness", role=Role.WITNESS, rig="wyvern")

    def test_refinery(self):
        ident = parse_identity("wyvern-refinery")
        assert ident.role == Role.REFINERY
        assert ident.rig == "wyvern"

    def test_crew(self):
        ident = parse_identity("wyvern-crew-nux")
        assert ident.role == Role.CREW
        assert (ident.rig, ident.member) == ("wyvern", "nux")

    def test_crew_splits_on_first_separator(self):
        ident = parse_identity("a-crew-b-crew-c")
        assert (ident.rig, ident.member) == ("a", "b-crew-c")

    def test_rig_with_dashes(self):
        ident = parse_identity("big-rig-witness")
        assert ident.rig == "big-rig"

    def test_witness_suffix_wins_over_crew(self):
        ident = parse_identity("a-crew-b-witness")
        assert ident.role == Role.WITNESS
        assert ident.rig == "a-crew-b"

    @pytest.mark.parametrize(
        "raw",
        ["", "deacon", "Mayor", "wyvern", "wyvern-polecat", "-witness", "-refinery", "-crew-nux", "wyvern-crew-"],
    )
    def test_unresolved(self, raw):
        ident = parse_identity(raw)
        assert ident.role == Role.UNRESOLVED
        assert not ident.resolved


class TestProjections:
    """Each shape yields session, state path, record id, and actor path."""

    def test_mayor_projections(self):
        ident = parse_identity("mayor")
        assert ident.session_name() == "gt-mayor"
        assert ident.state_path(TOWN) == TOWN / "mayor" / "state.json"
        assert ident.status_record_id() == "gt-mayor"
        assert ident.actor_path() == "mayor"
        assert ident.work_dir(TOWN) == TOWN

    def test_witness_projections(self):
        ident = parse_identity("wyvern-witness")
        assert ident.session_name() == "gt-wyvern-witness"
        assert ident.state_path(TOWN) == TOWN / "wyvern" / "witness" / "state.json"
        assert ident.status_record_id() == "gt-witness-wyvern"
        assert ident.actor_path() == "wyvern/witness"
        assert ident.work_dir(TOWN) == TOWN / "wyvern"

    def test_refinery_projections(self):
        ident = parse_identity("wyvern-refinery")
        assert ident.session_name() == "gt-wyvern-refinery"
        assert ident.state_path(TOWN) == TOWN / "wyvern" / "refinery" / "state.json"
        assert ident.status_record_id() == "gt-refinery-wyvern"
        assert ident.actor_path() == "wyvern/refinery"
        assert ident.work_dir(TOWN) == TOWN / "wyvern" / "refinery" / "rig"

    def test_crew_projections(self):
        ident = parse_identity("wyvern-crew-nux")
        assert ident.session_name() == "gt-wyvern-crew-nux"
        assert ident.state_path(TOWN) == TOWN / "wyvern" / "crew" / "nux" / "state.json"
        assert ident.status_record_id() == "gt-crew-wyvern-nux"
        assert ident.actor_path() == "wyvern/crew/nux"
        assert ident.work_dir(TOWN) == TOWN / "wyvern" / "crew" / "nux"

    def test_custom_session_prefix(self):
        assert parse_identity("mayor").session_name("town-") == "town-mayor"

    def test_unresolved_projects_nothing(self):
        ident = parse_identity("polecat-7")
        assert ident.session_name() is None
        assert ident.state_path(TOWN) is None
        assert ident.status_record_id() is None
        assert ident.actor_path() is None
        assert ident.work_dir(TOWN) is None

    def test_require_raises_for_unresolved(self):
        with pytest.raises(UnresolvedIdentityError):
            parse_identity("polecat-7").require()

    def test_presync_roles(self):
        assert parse_identity("wyvern-refinery").needs_presync
        assert parse_identity("wyvern-crew-nux").needs_presync
        assert not parse_identity("wyvern-witness").needs_presync
        assert not parse_identity("mayor").needs_presync


class TestRoundTrip:
    """Reconstructing an identity recovers its components exactly."""

    @pytest.mark.parametrize(
        "raw",
        ["mayor", "wyvern-witness", "big-rig-refinery", "wyvern-crew-nux", "a-crew-b-crew-c"],
    )
    def test_round_trip(self, raw):
        ident = parse_identity(raw)
        assert ident.to_string() == raw
        rebuilt = parse_identity(ident.to_string())
        assert (rebuilt.role, rebuilt.rig, rebuilt.member) == (ident.role, ident.rig, ident.member)

    def test_actor_path_components(self):
        ident = parse_identity("wyvern-crew-nux")
        rig, kind, member = ident.actor_path().split("/")
        assert (rig, member) == (ident.rig, ident.member)
        assert kind == "crew"

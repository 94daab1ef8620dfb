"""Unit tests for the State/Tech/A&M token-parity guard."""
from cfb_reconcile.services.sync.utils.token_parity import (
    A_AND_M,
    STATE,
    TECH,
    candidate_markers,
    parity_markers,
    violates_parity,
)


class TestParityMarkers:
    """Marker detection on provider strings and canonical ids."""

    def test_detects_state(self):
        """Should detect 'state', including the expanded 'St.' form."""
        assert parity_markers("Mississippi State Bulldogs") == {STATE}
        assert parity_markers("Appalachian St.") == {STATE}

    def test_detects_tech(self):
        assert parity_markers("Texas Tech Red Raiders") == {TECH}

    def test_detects_a_and_m(self):
        """Should detect 'A&M' as the adjacent tokens a, m."""
        assert parity_markers("Texas A&M Aggies") == {A_AND_M}
        assert candidate_markers("texas-a-m") == {A_AND_M}

    def test_no_markers(self):
        assert parity_markers("Ole Miss Rebels") == frozenset()
        assert candidate_markers("mississippi") == frozenset()


class TestViolatesParity:
    """Guard decisions."""

    # Rejections
    # ─────────────────────────────────────────────────────────────

    def test_state_missing_from_candidate(self):
        """Should reject 'Mississippi State' -> mississippi."""
        assert violates_parity("Mississippi State Bulldogs", "mississippi")

    def test_state_missing_from_raw(self):
        """Should reject 'Mississippi' -> mississippi-state."""
        assert violates_parity("Mississippi Rebels", "mississippi-state")

    def test_tech_and_a_and_m_are_distinct(self):
        """Should keep Texas, Texas Tech and Texas A&M apart."""
        assert violates_parity("Texas", "texas-tech")
        assert violates_parity("Texas A&M", "texas-tech")
        assert violates_parity("Texas Longhorns", "texas-a-m")

    # Acceptances
    # ─────────────────────────────────────────────────────────────

    def test_matching_markers_pass(self):
        assert not violates_parity("Texas A&M Aggies", "texas-a-m")
        assert not violates_parity("Ohio State Buckeyes", "ohio-state")
        assert not violates_parity("Georgia Bulldogs", "georgia")

    def test_works_on_normalized_input(self):
        """Should give the same answer for raw and normalized names."""
        assert violates_parity("mississippi state bulldogs", "mississippi")
        assert not violates_parity("texas a m", "texas-a-m")

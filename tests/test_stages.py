"""Tests for the stage table and per-deal status predicates."""

import pytest

from scripts.lib.stages import (
    LOST,
    PIPELINE_STAGES,
    STATUS_ORDER,
    display_status,
    in_conversion,
    is_converted,
    is_in_progress,
    lead_source,
    lost_from_stage,
    reached_stages,
    status_rank,
)


class TestDisplayStatus:
    def test_latest_reached_stage_wins(self, make_deal):
        deal = make_deal(enquiry_leads="2025-06-01", application="2025-06-03")
        assert display_status(deal) == "1. Application"

    def test_settled_stage(self, make_deal):
        deal = make_deal(status="Active", opportunity="2025-06-01", settled="2025-06-09")
        assert display_status(deal) == "6. Settled"

    def test_lost_wins_over_reached_stages(self, make_deal):
        deal = make_deal(status="Lost", settled="2025-06-09")
        assert display_status(deal) == LOST

    def test_blank_stage_fields_are_not_reached(self, make_deal):
        deal = make_deal(status="On Hold", enquiry_leads="   ")
        assert display_status(deal) == "On Hold"

    def test_default_unknown(self, make_deal):
        assert display_status(make_deal()) == "Unknown"

    def test_out_of_order_dates_use_process_order(self, make_deal):
        deal = make_deal(opportunity="2025-06-10", approval="2025-06-01")
        assert display_status(deal) == "3. Approval"


class TestStatusRank:
    def test_canonical_order(self):
        ranks = [status_rank(s) for s in STATUS_ORDER]
        assert ranks == sorted(ranks)
        assert status_rank(LOST) == len(PIPELINE_STAGES)

    def test_unknown_after_known(self):
        assert status_rank("Something Else") > status_rank(LOST)


class TestConversion:
    @pytest.mark.parametrize("field", [
        "application", "assessment", "approval", "loan_document",
        "settlement_queue", "settled", "settlement_2025", "settlement_2024",
    ])
    def test_converted_stages(self, make_deal, field):
        assert is_converted(make_deal(**{field: "2025-06-01"}))

    def test_enquiry_and_opportunity_are_not_converted(self, make_deal):
        assert not is_converted(make_deal(enquiry_leads="2025-06-01", opportunity="2025-06-02"))

    def test_in_conversion_excludes_settled_and_lost(self, make_deal):
        assert in_conversion(make_deal(approval="2025-06-01"))
        assert not in_conversion(make_deal(approval="2025-06-01", settled="2025-06-05"))
        assert not in_conversion(make_deal(approval="2025-06-01", status="Lost"))

    def test_in_progress(self, make_deal):
        assert is_in_progress(make_deal(opportunity="2025-06-01"))
        assert not is_in_progress(make_deal(settled="2025-06-01"))
        assert not is_in_progress(make_deal(status="Lost"))


class TestLeadSource:
    def test_rednote_first(self, make_deal):
        assert lead_source(make_deal(from_rednote=True, from_lifex=True)) == "RedNote"

    def test_lifex(self, make_deal):
        assert lead_source(make_deal(from_lifex=True)) == "LifeX"

    def test_referral_otherwise(self, make_deal):
        assert lead_source(make_deal()) == "Referral"


class TestLostFromStage:
    def test_mapped_process_label(self, make_deal):
        deal = make_deal(status="Lost", lost_from_process="Assessment")
        assert lost_from_stage(deal) == "2. Assessment"

    def test_unmapped_label_passes_through(self, make_deal):
        deal = make_deal(status="Lost", lost_from_process="Valuation")
        assert lost_from_stage(deal) == "Valuation"

    def test_falls_back_to_last_reached_stage(self, make_deal):
        deal = make_deal(status="Lost", enquiry_leads="2025-06-01", approval="2025-06-04")
        assert lost_from_stage(deal) == "3. Approval"

    def test_defaults_to_first_stage(self, make_deal):
        assert lost_from_stage(make_deal(status="Lost")) == "Enquiry Leads"

    def test_reached_stages_need_parseable_dates(self, make_deal):
        deal = make_deal(enquiry_leads="2025-06-01", opportunity="soon", application="2025-06-03")
        assert reached_stages(deal) == ["Enquiry Leads", "1. Application"]

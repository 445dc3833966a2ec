"""
Test suite for print jobs, the print watermark and text rendering
"""

import pytest
from datetime import date

from coop_ledger.accounts import AccountType, Direction
from coop_ledger.errors import NotFoundError, PersistenceError
from coop_ledger.ledger import AccountLedger
from coop_ledger.members import MemberRegistry
from coop_ledger.passbook import build_passbook_layout
from coop_ledger.printing import (
    PrintSessionController, headings_default, new_page_options, render_cover, render_headings, render_text
)
from coop_ledger.storage import InMemoryStorage


class WatermarkFailingStorage(InMemoryStorage):
    """Fails member writes while armed"""
    
    def __init__(self):
        super().__init__()
        self.fail_members = False
    
    def save(self, table, record_id, data):
        if table == "members" and self.fail_members:
            raise PersistenceError("members table unavailable")
        super().save(table, record_id, data)


@pytest.fixture
def storage():
    return WatermarkFailingStorage()


@pytest.fixture
def ledger(storage):
    return AccountLedger(storage)


@pytest.fixture
def members(storage):
    registry = MemberRegistry(storage)
    registry.register(
        "M001", "Asha Patil", phone="9800000000", father_name="Ramesh Patil",
        address="12 Market Road", city="Pune", pin_code="411001", join_date=date(2019, 6, 1)
    )
    return registry


@pytest.fixture
def controller(ledger, members):
    return PrintSessionController(ledger, members)


@pytest.fixture
def txns(ledger):
    """
    Four passbook rows, one per transaction id below:
        t1 OD 01/01   t2 OD 01/01   t3 RL 02/01   t4 OD 03/01
    """
    od = ledger.open_account("M001", AccountType.OPTIONAL_DEPOSIT, "OD-1",
                             opening_amount="1000", opening_date=date(2024, 1, 1))
    t2 = ledger.post_transaction(od.id, date(2024, 1, 1), Direction.CREDIT, "200", "Deposit")
    loan = ledger.open_account("M001", AccountType.LOAN, "RL-1",
                               opening_amount="5000", opening_date=date(2024, 1, 2))
    t4 = ledger.post_transaction(od.id, date(2024, 1, 3), Direction.DEBIT, "100", "Withdrawal")
    return [od.transactions[0].id, t2.id, loan.transactions[0].id, t4.id]


def layout_for(ledger, members, member_id="M001"):
    member = members.get_member(member_id)
    return build_passbook_layout(ledger.get_member_accounts(member_id), member.last_printed_transaction_id)


class TestPrintStream:
    """Blank-line spacing and row selection"""
    
    def test_continuation_spacing_and_offset(self, ledger, members, controller, txns):
        members.set_watermark("M001", txns[1])
        layout = layout_for(ledger, members)
        
        job = controller.commit_print_selection(layout, [txns[2], txns[3]], offset=2)
        
        assert [line.is_blank for line in job.lines] == [True, True, True, True, False, False]
        assert [row.id for row in job.data_rows] == [txns[2], txns[3]]
        assert job.watermark_candidate == txns[3]
    
    def test_spacing_disabled(self, ledger, members, controller, txns):
        members.set_watermark("M001", txns[1])
        layout = layout_for(ledger, members)
        
        job = controller.commit_print_selection(layout, [txns[2]], offset=1, continuation_spacing=False)
        
        assert [line.is_blank for line in job.lines] == [True, False]
    
    def test_unprinted_rows_before_selection_get_no_spacer(self, ledger, members, controller, txns):
        members.set_watermark("M001", txns[0])
        layout = layout_for(ledger, members)
        
        job = controller.commit_print_selection(layout, [txns[3]])
        
        # Only the first row is on paper; rows two and three are not
        assert [line.is_blank for line in job.lines] == [True, False]
    
    def test_rows_follow_layout_order(self, ledger, members, controller, txns):
        layout = layout_for(ledger, members)
        
        job = controller.commit_print_selection(layout, [txns[3], txns[0]])
        
        assert [row.id for row in job.data_rows] == [txns[0], txns[3]]
        assert job.watermark_candidate == txns[3]
    
    def test_empty_selection(self, ledger, members, controller, txns):
        layout = layout_for(ledger, members)
        
        job = controller.commit_print_selection(layout, [], offset=3)
        
        assert job.data_rows == []
        assert len(job.lines) == 3
        assert job.watermark_candidate is None
    
    def test_negative_offset_rejected(self, ledger, members, controller, txns):
        with pytest.raises(ValueError):
            controller.commit_print_selection(layout_for(ledger, members), [txns[0]], offset=-1)
    
    def test_generating_does_not_move_watermark(self, ledger, members, controller, txns):
        controller.commit_print_selection(layout_for(ledger, members), txns)
        assert members.get_member("M001").last_printed_transaction_id is None


class TestWatermark:
    """Watermark advance after a confirmed print"""
    
    def test_commit_advances_to_last_row(self, ledger, members, controller, txns):
        job = controller.commit_print_selection(layout_for(ledger, members), [txns[0], txns[1]])
        
        member = controller.commit(job, "M001")
        
        assert member.last_printed_transaction_id == txns[1]
        assert members.get_member("M001").last_printed_transaction_id == txns[1]
        assert [row.is_printed for row in layout_for(ledger, members)] == [True, True, False, False]
    
    def test_full_print_of_collision_rows(self, ledger, members, controller):
        od = ledger.open_account("M001", AccountType.OPTIONAL_DEPOSIT, "OD-1",
                                 opening_amount="100", opening_date=date(2024, 1, 1))
        ledger.post_transaction(od.id, date(2024, 1, 1), Direction.CREDIT, "50", "Deposit")
        sm = ledger.open_account("M001", AccountType.SHARE_CAPITAL, "SM-1",
                                 opening_amount="10", opening_date=date(2024, 1, 1))
        latest = sm.transactions[0].id
        layout = layout_for(ledger, members)
        
        # The share entry fills the first row's empty slot, after the second OD row opened
        assert layout[0].id == latest
        
        job = controller.commit_print_selection(layout, [row.id for row in layout])
        assert job.watermark_candidate == latest
        
        controller.commit(job, "M001", layout)
        
        assert members.get_member("M001").last_printed_transaction_id == latest
        assert all(row.is_printed for row in layout_for(ledger, members))
    
    def test_empty_job_leaves_watermark(self, ledger, members, controller, txns):
        members.set_watermark("M001", txns[1])
        job = controller.commit_print_selection(layout_for(ledger, members), [])
        
        controller.commit(job, "M001")
        
        assert members.get_member("M001").last_printed_transaction_id == txns[1]
    
    def test_never_moves_backwards(self, members, controller, txns):
        controller.advance_watermark("M001", txns[3])
        controller.advance_watermark("M001", txns[1])
        
        assert members.get_member("M001").last_printed_transaction_id == txns[3]
    
    def test_reprint_keeps_watermark(self, ledger, members, controller, txns):
        controller.advance_watermark("M001", txns[2])
        layout = layout_for(ledger, members)
        
        job = controller.commit_print_selection(layout, [txns[0]])
        controller.commit(job, "M001", layout)
        
        assert members.get_member("M001").last_printed_transaction_id == txns[2]
    
    def test_unknown_transaction(self, controller, txns):
        with pytest.raises(NotFoundError):
            controller.advance_watermark("M001", "TX99999999999999999")
    
    def test_unknown_member(self, controller):
        with pytest.raises(NotFoundError):
            controller.advance_watermark("M404", "TX1")
    
    def test_storage_failure_propagates(self, storage, members, controller, txns):
        storage.fail_members = True
        
        with pytest.raises(PersistenceError):
            controller.advance_watermark("M001", txns[2])
        
        storage.fail_members = False
        assert members.get_member("M001").last_printed_transaction_id is None


class TestRendering:
    """Text output and helpers"""
    
    def test_render_text(self, ledger, members, controller, txns):
        layout = layout_for(ledger, members)
        job = controller.commit_print_selection(layout, [txns[2]], offset=1, show_headings=True)
        
        lines = render_text(job)
        
        assert lines[:2] == render_headings()
        assert lines[2] == ""
        assert lines[3].startswith("02/01/24 cash")
        assert lines[3].endswith("5000")
    
    def test_headings_list_codes(self):
        first, second = render_headings()
        for code in ("SM", "CD", "OD", "RD", "RL"):
            assert code in first
        assert "Bal." in second
    
    def test_render_cover(self, members):
        cover = render_cover(members.get_member("M001"))
        
        assert "Account No.       : M001" in cover
        assert "Asha Patil" in cover
        assert "01/06/19" in cover
        assert "$" not in cover
    
    def test_render_cover_keeps_unknown_placeholders(self, members):
        cover = render_cover(members.get_member("M001"), "$ACNAME,40 / $BRANCH,10")
        assert cover == "Asha Patil / $BRANCH,10"
    
    def test_headings_default(self, ledger, members, txns):
        layout = layout_for(ledger, members)
        
        assert headings_default(layout, [txns[0]])
        assert not headings_default(layout, [txns[3]])
        assert not headings_default([], [txns[0]])
    
    def test_new_page_options(self):
        options = new_page_options()
        assert options.offset == 0
        assert not options.continuation_spacing
        assert options.show_headings

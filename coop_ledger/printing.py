"""
Print Session Controller

Builds a concrete print job from a row selection and, as a separate step,
moves the member's print watermark forward once the operator confirms the
page actually printed. Generating a job never writes anything: a failed or
cancelled print can simply be generated again from current data.
"""

from dataclasses import dataclass
import re
from enum import Enum
from typing import Collection, Dict, List, Optional, Sequence

from .amounts import format_whole
from .errors import NotFoundError
from .ledger import AccountLedger
from .logging_config import get_logger, log_action
from .members import Member, MemberRegistry
from .accounts import PRINTABLE_CODES
from .passbook import PrintRow, build_passbook_layout, transaction_positions


class LineKind(Enum):
    BLANK = "blank"
    DATA = "data"


@dataclass(frozen=True)
class PrintLine:
    """One physical line of the print stream"""
    kind: LineKind
    row: Optional[PrintRow] = None

    @property
    def is_blank(self) -> bool:
        return self.kind == LineKind.BLANK


@dataclass(frozen=True)
class PrintJob:
    """Ordered print stream plus what committing it would set the watermark to"""
    lines: List[PrintLine]
    show_headings: bool
    watermark_candidate: Optional[str]

    @property
    def data_rows(self) -> List[PrintRow]:
        return [line.row for line in self.lines if not line.is_blank]


@dataclass(frozen=True)
class PrintOptions:
    offset: int = 0
    continuation_spacing: bool = True
    show_headings: bool = False


BLANK_LINE = PrintLine(LineKind.BLANK)


def new_page_options() -> PrintOptions:
    """Preset for starting a fresh passbook page"""
    return PrintOptions(offset=0, continuation_spacing=False, show_headings=True)


def headings_default(layout: Sequence[PrintRow], selected_row_ids: Collection[str]) -> bool:
    """UI convenience: headings are wanted when the very first row is being printed"""
    return bool(layout) and layout[0].id in selected_row_ids


class PrintSessionController:
    """Turns layouts into print jobs and owns the member watermark"""

    def __init__(self, ledger: AccountLedger, members: MemberRegistry):
        self.ledger = ledger
        self.members = members
        self.logger = get_logger("coop_ledger.printing")

    def commit_print_selection(
        self,
        layout: Sequence[PrintRow],
        selected_row_ids: Collection[str],
        offset: int = 0,
        continuation_spacing: bool = True,
        show_headings: bool = False
    ) -> PrintJob:
        """
        Produce the print stream for a selection.

        Leading blanks come first: one per already-printed row preceding the
        first selected row (when `continuation_spacing` is set), then the
        manual `offset`. The selected rows follow in layout order.
        """
        if offset < 0:
            raise ValueError("Offset must not be negative")
        selected = set(selected_row_ids)

        lines: List[PrintLine] = []
        first_index = next((i for i, row in enumerate(layout) if row.id in selected), None)
        if continuation_spacing and first_index is not None:
            lines.extend(BLANK_LINE for row in layout[:first_index] if row.is_printed)
        lines.extend(BLANK_LINE for _ in range(offset))

        chosen = [row for row in layout if row.id in selected]
        lines.extend(PrintLine(LineKind.DATA, row) for row in chosen)

        # Rows reach different points in canonical order; take the furthest
        candidate = max(chosen, key=lambda row: max(row.sequences)) if chosen else None

        return PrintJob(
            lines=lines,
            show_headings=show_headings,
            watermark_candidate=candidate.id if candidate else None,
        )

    def advance_watermark(
        self,
        member_id: str,
        new_last_printed_transaction_id: Optional[str],
        layout: Optional[Sequence[PrintRow]] = None
    ) -> Member:
        """
        Record that everything up to `new_last_printed_transaction_id` is on paper.

        No-op for an empty id, and never moves the watermark backwards in
        canonical order. Storage failures propagate; they are not retried
        here because the operator must confirm again.
        """
        lock_key = f"member:{member_id}"
        with self.ledger.locks.hold(lock_key):
            member = self.members.get_member(member_id)
            if not new_last_printed_transaction_id:
                return member

            if layout is None:
                layout = build_passbook_layout(
                    self.ledger.get_member_accounts(member_id), member.last_printed_transaction_id
                )
            positions = transaction_positions(layout)
            if new_last_printed_transaction_id not in positions:
                raise NotFoundError(
                    f"Transaction {new_last_printed_transaction_id} is not in member {member_id}'s passbook"
                )

            current = member.last_printed_transaction_id
            if current in positions and positions[current] >= positions[new_last_printed_transaction_id]:
                log_action(
                    self.logger, "info", "Watermark not moved backwards",
                    member_id=member_id, action="advance_watermark",
                    extra={"current": current, "requested": new_last_printed_transaction_id}
                )
                return member

            member = self.members.set_watermark(member_id, new_last_printed_transaction_id)

        log_action(
            self.logger, "info", "Print watermark advanced",
            member_id=member_id, action="advance_watermark",
            extra={"previous": current, "current": new_last_printed_transaction_id}
        )
        return member

    def commit(self, job: PrintJob, member_id: str, layout: Optional[Sequence[PrintRow]] = None) -> Member:
        """Confirm a printed job: advance to its highest selected row in canonical order"""
        return self.advance_watermark(member_id, job.watermark_candidate, layout)


# ----------------------------------------------------------------------
# Fixed-width text rendering
# ----------------------------------------------------------------------

DATE_WIDTH = 9
PARTICULARS_WIDTH = 12
AMOUNT_WIDTH = 8


def _amount(value) -> str:
    return format_whole(value) if value else ""


def render_headings() -> List[str]:
    first = "Trn.Date".ljust(DATE_WIDTH) + "Particular".ljust(PARTICULARS_WIDTH)
    second = " " * (DATE_WIDTH + PARTICULARS_WIDTH)
    for code in PRINTABLE_CODES:
        first += f"<----- {code} ----->".center(AMOUNT_WIDTH * 3)
        second += "".join(label.rjust(AMOUNT_WIDTH) for label in ("Dr.", "Cr.", "Bal."))
    return [first.rstrip(), second.rstrip()]


def render_row(row: PrintRow) -> str:
    line = row.date.strftime("%d/%m/%y").ljust(DATE_WIDTH)
    line += row.particulars[:PARTICULARS_WIDTH].ljust(PARTICULARS_WIDTH)
    for code in PRINTABLE_CODES:
        cell = row.cell(code)
        if cell is None:
            line += " " * (AMOUNT_WIDTH * 3)
            continue
        line += _amount(cell.debit).rjust(AMOUNT_WIDTH)
        line += _amount(cell.credit).rjust(AMOUNT_WIDTH)
        line += format_whole(cell.balance).rjust(AMOUNT_WIDTH)
    return line.rstrip()


def render_text(job: PrintJob) -> List[str]:
    """Render a job as passbook lines; blanks stay empty to keep row alignment"""
    lines = render_headings() if job.show_headings else []
    for line in job.lines:
        lines.append("" if line.is_blank else render_row(line.row))
    return lines


DEFAULT_COVER_TEMPLATE = "." + "\n" * 32 + """\
                              Member Personal Details
                            ============================
 Account No.       : $ACNO,5
 Name              :   $ACNAME,40
 F/H/D Of Name     :   $FATHER,40
 Address           :   $ACADD1,100
 City              :   $ACCITY,20
 Pin No            :   $ACPIN1,10
 Mobile No.        :   $MOBILENO,12
 MemberShip Date   :   $MEMDATE,15
"""


def cover_fields(member: Member) -> Dict[str, str]:
    return {
        "ACNO": member.id,
        "ACNAME": member.full_name,
        "FATHER": member.father_name,
        "ACADD1": member.address,
        "ACCITY": member.city,
        "ACPIN1": member.pin_code,
        "MOBILENO": member.phone,
        "MEMDATE": member.join_date.strftime("%d/%m/%y") if member.join_date else "",
    }


def render_cover(member: Member, template: str = DEFAULT_COVER_TEMPLATE) -> str:
    """
    Fill a passbook cover template. `$KEY` or `$KEY,width` placeholders are
    replaced by the member's details; unknown keys are left as written.
    """

    fields = cover_fields(member)

    def substitute(match):
        key = match.group(1)
        return fields[key] if key in fields else match.group(0)

    return re.sub(r"\$([A-Z0-9]+)(?:,\d+)?", substitute, template)

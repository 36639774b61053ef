import hashlib
import logging
from io import BytesIO
from pathlib import Path
from typing import Protocol
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from models.models import Contract, Payment

from .asyncio_threads import asyncio_run
from .settings import settings

logger = logging.getLogger("documents.pdf")

LOCAL_DISK = "local"


class DocumentStore(Protocol):
    async def render_contract_document(self, contract: Contract) -> tuple[str, str]: ...

    async def render_receipt(self, payment: Payment, contract: Contract) -> str: ...

    async def get_document_bytes(self, ref: str) -> bytes: ...

    async def delete_document(self, ref: str) -> None: ...


def _styles():
    styles = getSampleStyleSheet()
    styles.add(
        ParagraphStyle(
            name="TitleStyle",
            fontSize=18,
            alignment=TA_CENTER,
            spaceAfter=12,
            textColor=colors.HexColor("#1F2937"),
        )
    )
    styles.add(
        ParagraphStyle(
            name="SectionHeader",
            fontSize=12,
            spaceBefore=14,
            spaceAfter=6,
            textColor=colors.HexColor("#111827"),
            fontName="Helvetica-Bold",
        )
    )
    styles.add(
        ParagraphStyle(name="Meta", fontSize=9, alignment=TA_RIGHT, textColor=colors.grey)
    )
    return styles


def _key_value_table(rows: list[list[str]]) -> Table:
    table = Table(rows, colWidths=[150, None])
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (0, -1), colors.whitesmoke),
                ("GRID", (0, 0), (-1, -1), 0.5, colors.lightgrey),
                ("FONT", (0, 0), (0, -1), "Helvetica-Bold"),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ]
        )
    )
    return table


def _money(value) -> str:
    return f"{value:,.0f} {settings.CURRENCY}"


class ContractPdfBuilder:
    @staticmethod
    def _build(title: str, reference: str, sections) -> bytes:
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=30,
            leftMargin=30,
            topMargin=30,
            bottomMargin=30,
            title=title,
            invariant=1,
        )
        styles = _styles()
        elements = [
            Paragraph(title, styles["TitleStyle"]),
            Paragraph(f"Reference: <b>{escape(reference)}</b>", styles["Meta"]),
            Spacer(1, 16),
        ]
        for header, body in sections:
            elements.append(Paragraph(header, styles["SectionHeader"]))
            if isinstance(body, list):
                elements.append(_key_value_table(body))
            else:
                elements.append(Paragraph(escape(body), styles["Normal"]))
            elements.append(Spacer(1, 10))
        doc.build(elements)
        return buffer.getvalue()

    @classmethod
    def contract(cls, contract: Contract) -> bytes:
        signatures = []
        for label, signed_at in (
            ("Landlord", contract.landlord_signed_at),
            ("Tenant", contract.tenant_signed_at),
        ):
            signatures.append(
                [label, signed_at.isoformat() if signed_at else "Awaiting signature"]
            )
        sections = [
            (
                "Parties",
                [
                    ["Landlord", str(contract.landlord_id)],
                    ["Tenant", str(contract.tenant_id) if contract.tenant_id else "To be assigned"],
                ],
            ),
            (
                "Terms",
                [
                    ["Transaction", contract.transaction_type.value],
                    ["Monthly amount", _money(contract.monthly_rent)],
                    ["Deposit", _money(contract.deposit_amount)],
                    ["Advance", _money(contract.advance_amount)],
                    ["Start date", contract.start_date.isoformat()],
                    ["End date", contract.end_date.isoformat()],
                    [
                        "Duration",
                        "Indefinite" if contract.is_indefinite else f"{contract.duration_months} month(s)",
                    ],
                ],
            ),
        ]
        for index, clause in enumerate(contract.clauses or [], start=1):
            sections.append((f"Clause {index}", clause))
        if contract.special_clauses:
            sections.append(("Special clauses", contract.special_clauses))
        sections.append(("Signatures", signatures))
        return cls._build("RENTAL CONTRACT", contract.reference, sections)

    @classmethod
    def receipt(cls, payment: Payment, contract: Contract) -> bytes:
        sections = [
            (
                "Payment Summary",
                [
                    ["Contract", contract.reference],
                    ["Method", payment.method.value],
                    ["Rent", _money(payment.rent_amount)],
                    ["Deposit", _money(payment.deposit_amount)],
                    ["Commission (non-refundable)", _money(payment.commission_amount)],
                    ["Total", _money(payment.total_amount)],
                    ["Status", payment.status.value],
                ],
            ),
            (
                "Notice",
                "This receipt confirms that the payment listed above has been "
                "received and released to the landlord. Please keep this document "
                "for your records.",
            ),
        ]
        return cls._build("PAYMENT RECEIPT", payment.reference, sections)


class LocalDocumentStore:
    """Stores rendered PDFs on local disk; refs are paths relative to the root."""

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root or settings.DOCUMENT_STORAGE_PATH)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, ref: str) -> Path:
        path = (self.root / ref).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Document reference escapes storage root: {ref}")
        return path

    def _write(self, ref: str, content: bytes) -> None:
        path = self._path(ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    async def render_contract_document(self, contract: Contract) -> tuple[str, str]:
        content = await asyncio_run.run_blocking(ContractPdfBuilder.contract, contract)
        suffix = "sealed" if contract.is_fully_signed else "draft"
        ref = f"contracts/{contract.reference}-{suffix}.pdf"
        await asyncio_run.run_blocking(self._write, ref, content)
        logger.info("Rendered contract document %s", ref)
        return ref, hashlib.sha256(content).hexdigest()

    async def render_receipt(self, payment: Payment, contract: Contract) -> str:
        content = await asyncio_run.run_blocking(ContractPdfBuilder.receipt, payment, contract)
        ref = f"receipts/{payment.reference}.pdf"
        await asyncio_run.run_blocking(self._write, ref, content)
        logger.info("Rendered receipt %s", ref)
        return ref

    async def get_document_bytes(self, ref: str) -> bytes:
        return await asyncio_run.run_blocking(self._path(ref).read_bytes)

    async def delete_document(self, ref: str) -> None:
        path = self._path(ref)
        if path.exists():
            path.unlink()
            logger.info("Deleted document %s", ref)

# compliance_catalogue.py — Reference catalogue of Indian compliance filings
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import ComplianceType, ComplianceFrequency

logger = logging.getLogger("ca-portal.catalogue")

_QUARTER_MONTHS = [7, 10, 1, 4]

COMPLIANCE_TYPES = [
    {
        "code": "ITR_INDIVIDUAL",
        "display_name": "Income Tax Return (Individual)",
        "frequency": ComplianceFrequency.ANNUAL,
        "meta": {"description": "Annual income tax return filing for individuals", "dueDateMonth": 7, "dueDateDay": 31},
    },
    {
        "code": "ITR_BUSINESS",
        "display_name": "Income Tax Return (Business)",
        "frequency": ComplianceFrequency.ANNUAL,
        "meta": {"description": "Annual income tax return filing for businesses", "dueDateMonth": 9, "dueDateDay": 30},
    },
    {
        "code": "GSTR_1",
        "display_name": "GSTR-1 (Outward Supplies)",
        "frequency": ComplianceFrequency.MONTHLY,
        "meta": {"description": "Monthly return for outward supplies", "dueDateDay": 11},
    },
    {
        "code": "GSTR_3B",
        "display_name": "GSTR-3B (Summary Return)",
        "frequency": ComplianceFrequency.MONTHLY,
        "meta": {"description": "Monthly summary return with payment of tax", "dueDateDay": 20},
    },
    {
        "code": "GSTR_9",
        "display_name": "GSTR-9 (Annual Return)",
        "frequency": ComplianceFrequency.ANNUAL,
        "meta": {"description": "Annual GST return", "dueDateMonth": 12, "dueDateDay": 31},
    },
    {
        "code": "TDS_QUARTERLY",
        "display_name": "TDS Return (Quarterly)",
        "frequency": ComplianceFrequency.QUARTERLY,
        "meta": {"description": "Quarterly TDS return filing", "dueDateMonths": _QUARTER_MONTHS},
    },
    {
        "code": "TDS_24Q",
        "display_name": "TDS Return 24Q (Salaries)",
        "frequency": ComplianceFrequency.QUARTERLY,
        "meta": {"description": "Quarterly TDS return for salaries", "dueDateMonths": _QUARTER_MONTHS},
    },
    {
        "code": "TDS_26Q",
        "display_name": "TDS Return 26Q (Non-Salary)",
        "frequency": ComplianceFrequency.QUARTERLY,
        "meta": {"description": "Quarterly TDS return for non-salary payments", "dueDateMonths": _QUARTER_MONTHS},
    },
    {
        "code": "ROC_AOC_4",
        "display_name": "AOC-4 (Annual Return)",
        "frequency": ComplianceFrequency.ANNUAL,
        "meta": {"description": "Annual filing of financial statements", "dueDateMonths": [10, 11]},
    },
    {
        "code": "ROC_MGT_7",
        "display_name": "MGT-7 (Annual Return)",
        "frequency": ComplianceFrequency.ANNUAL,
        "meta": {"description": "Annual return of company", "dueDateMonths": [10, 11]},
    },
    {
        "code": "AUDIT_TAX_AUDIT",
        "display_name": "Tax Audit Report (3CD)",
        "frequency": ComplianceFrequency.ANNUAL,
        "meta": {"description": "Tax audit report under Income Tax Act", "dueDateMonth": 9, "dueDateDay": 30},
    },
    {
        "code": "TDS_TCS",
        "display_name": "TCS Return (Quarterly)",
        "frequency": ComplianceFrequency.QUARTERLY,
        "meta": {"description": "Quarterly TCS (Tax Collected at Source) return", "dueDateMonths": _QUARTER_MONTHS},
    },
    {
        "code": "ADVANCE_TAX",
        "display_name": "Advance Tax Payment",
        "frequency": ComplianceFrequency.QUARTERLY,
        "meta": {"description": "Quarterly advance tax payment", "dueDateMonths": [6, 9, 12, 3]},
    },
]


async def seed_compliance_types(db: AsyncSession) -> int:
    """Upsert the catalogue by code. Returns the number of rows inserted."""
    result = await db.execute(select(ComplianceType))
    existing = {ct.code: ct for ct in result.scalars().all()}

    inserted = 0
    for entry in COMPLIANCE_TYPES:
        row = existing.get(entry["code"])
        if row is None:
            db.add(ComplianceType(**entry))
            inserted += 1
        else:
            row.display_name = entry["display_name"]
            row.frequency = entry["frequency"]
            row.meta = entry["meta"]

    await db.flush()
    if inserted:
        logger.info(f"Seeded {inserted} compliance types")
    return inserted

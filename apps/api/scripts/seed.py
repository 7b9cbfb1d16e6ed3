"""Seed default credit packages and document templates. Safe to run repeatedly."""

import asyncio
import os
import sys
import uuid
from decimal import Decimal

# Add parent dir to path to find config/database/models
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import async_session_maker
from models.credit_package import CreditPackage
from models.document_template import DocumentTemplate

DEFAULT_PACKAGES = [
    {"name": "Free Starter", "name_bn": "ফ্রি স্টার্টার", "credits": 10, "bonus_credits": 0, "price": Decimal("0"), "sort_order": 0},
    {"name": "Basic", "name_bn": "বেসিক", "credits": 100, "bonus_credits": 0, "price": Decimal("100"), "sort_order": 1},
    {"name": "Standard", "name_bn": "স্ট্যান্ডার্ড", "credits": 500, "bonus_credits": 50, "price": Decimal("450"), "sort_order": 2},
    {"name": "Premium", "name_bn": "প্রিমিয়াম", "credits": 1000, "bonus_credits": 150, "price": Decimal("850"), "sort_order": 3},
]

DEFAULT_TEMPLATES = [
    {
        "name": "Student ID Card",
        "name_bn": "ছাত্র পরিচয়পত্র",
        "type": "id_card",
        "category": "identity",
        "category_bn": "পরিচয়পত্র",
        "description": "Student identification card",
        "credit_cost": 2,
        "layout": {"page_size": "85.6mm 54mm", "orientation": "landscape"},
        "fields": [
            {"name": "student_name", "label": "Name", "label_bn": "নাম", "type": "string", "required": True},
            {"name": "student_id", "label": "Student ID", "label_bn": "আইডি", "type": "string", "required": True},
            {"name": "class_name", "label": "Class", "label_bn": "শ্রেণি", "type": "string", "required": True},
            {"name": "section", "label": "Section", "label_bn": "শাখা", "type": "string", "required": False},
            {"name": "roll_number", "label": "Roll", "label_bn": "রোল", "type": "string", "required": False},
            {"name": "blood_group", "label": "Blood Group", "label_bn": "রক্তের গ্রুপ", "type": "string", "required": False},
            {"name": "valid_until", "label": "Valid Until", "label_bn": "মেয়াদ", "type": "date", "required": False},
        ],
    },
    {
        "name": "Admit Card",
        "name_bn": "প্রবেশপত্র",
        "type": "admit_card",
        "category": "examination",
        "category_bn": "পরীক্ষা",
        "description": "Examination admit card",
        "credit_cost": 3,
        "layout": {"page_size": "A5", "orientation": "landscape"},
        "fields": [
            {"name": "student_name", "label": "Name", "label_bn": "নাম", "type": "string", "required": True},
            {"name": "roll_number", "label": "Roll", "label_bn": "রোল", "type": "string", "required": True},
            {"name": "exam_name", "label": "Examination", "label_bn": "পরীক্ষার নাম", "type": "string", "required": True},
            {"name": "exam_date", "label": "Exam Date", "label_bn": "পরীক্ষার তারিখ", "type": "date", "required": True},
            {"name": "center", "label": "Centre", "label_bn": "কেন্দ্র", "type": "string", "required": False},
        ],
    },
    {
        "name": "Testimonial Certificate",
        "name_bn": "প্রশংসাপত্র",
        "type": "certificate",
        "category": "certificate",
        "category_bn": "সনদপত্র",
        "description": "Testimonial certificate for departing students",
        "credit_cost": 5,
        "layout": {"page_size": "A4", "orientation": "portrait"},
        "fields": [
            {"name": "student_name", "label": "Name", "label_bn": "নাম", "type": "string", "required": True},
            {"name": "father_name", "label": "Father's Name", "label_bn": "পিতার নাম", "type": "string", "required": True},
            {"name": "mother_name", "label": "Mother's Name", "label_bn": "মাতার নাম", "type": "string", "required": False},
            {"name": "passing_year", "label": "Passing Year", "label_bn": "পাসের সাল", "type": "integer", "required": True},
            {"name": "gpa", "label": "GPA", "label_bn": "জিপিএ", "type": "number", "required": False},
            {"name": "issue_date", "label": "Issue Date", "label_bn": "প্রদানের তারিখ", "type": "date", "required": True},
        ],
    },
]


async def seed_packages(session: AsyncSession) -> int:
    created = 0
    for package in DEFAULT_PACKAGES:
        result = await session.execute(select(CreditPackage).where(CreditPackage.name == package["name"]))
        if result.scalar_one_or_none():
            continue
        session.add(CreditPackage(id=str(uuid.uuid4()), is_active=True, **package))
        created += 1
    await session.commit()
    return created


async def seed_templates(session: AsyncSession) -> int:
    created = 0
    for template in DEFAULT_TEMPLATES:
        result = await session.execute(
            select(DocumentTemplate).where(
                DocumentTemplate.type == template["type"],
                DocumentTemplate.name == template["name"],
                DocumentTemplate.school_id.is_(None),
            )
        )
        if result.scalar_one_or_none():
            continue
        session.add(DocumentTemplate(id=str(uuid.uuid4()), is_active=True, usage_count=0, school_id=None, **template))
        created += 1
    await session.commit()
    return created


async def seed() -> dict:
    async with async_session_maker() as session:
        packages = await seed_packages(session)
        templates = await seed_templates(session)
    return {"packages": packages, "templates": templates}


def main() -> int:
    try:
        result = asyncio.run(seed())
    except Exception as exc:
        print(f"❌ Seed failed: {exc}", file=sys.stderr)
        return 1
    print(f"✅ Seed complete: {result['packages']} packages, {result['templates']} templates created.")
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Advisory Generator

One LLM call per disease that turns the TreatmentSet into practical advice.
Single attempt, bounded by a timeout. Any failure yields None so the caller
can tell "attempted and failed" apart from "not attempted" (absent key).
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from app.config import ADVISORY_TIMEOUT, LLM_MODEL_ADVISORY
from app.services.analysis import TreatmentGroup, TreatmentKind
from app.utils.text_processing import clean_generated_text

logger = logging.getLogger(__name__)

NO_DATA = "Không có dữ liệu"


def severity_label(confidence: float) -> str:
    if confidence > 0.6:
        return "NẶNG"
    if confidence > 0.4:
        return "TRUNG BÌNH"
    return "NHẸ"


def _items_by_kind(groups: List[TreatmentGroup]) -> Dict[TreatmentKind, List[Dict[str, Any]]]:
    by_kind = {kind: [] for kind in TreatmentKind}
    for group in groups:
        by_kind[group.kind] = list(group.items)
    return by_kind


def _numbered(lines: List[str]) -> str:
    if not lines:
        return NO_DATA
    return "\n".join(f"{i}. {line}" for i, line in enumerate(lines, 1))


def build_advisory_prompt(
    disease_name: str,
    confidence: float,
    plant_name: Optional[str],
    groups: List[TreatmentGroup],
) -> str:
    by_kind = _items_by_kind(groups)
    chemical = [
        f"{p.get('name')} (Hoạt chất: {p['activeIngredient']})" if p.get("activeIngredient") else str(p.get("name"))
        for p in by_kind[TreatmentKind.CHEMICAL]
    ]
    biological = [str(b.get("name")) for b in by_kind[TreatmentKind.BIOLOGICAL]]
    cultural = [str(c.get("description") or c.get("name")) for c in by_kind[TreatmentKind.CULTURAL]]

    percent = round(confidence * 100)
    severity = severity_label(confidence)

    if confidence > 0.6:
        plan = """⚠️ BỆNH NẶNG → Ưu tiên Hóa Học + Sinh Học + Canh Tác
A) GIAI ĐOẠN 1 (3-7 ngày đầu): chọn 1 thuốc hóa học tốt nhất, liều lượng, cách pha, tần suất, thời điểm phun
B) GIAI ĐOẠN 2 (sau 7-14 ngày): phương pháp sinh học phù hợp
C) DUY TRÌ: 2-3 biện pháp canh tác quan trọng nhất"""
    elif confidence > 0.4:
        plan = """ℹ️ BỆNH TRUNG BÌNH → Ưu tiên Sinh Học + Canh Tác, Hóa Học nếu cần
A) ƯU TIÊN: phương pháp sinh học tốt nhất
B) DỰ PHÒNG: 2-3 biện pháp canh tác
C) DỰ PHÒNG: thuốc hóa học nếu sinh học không hiệu quả sau 7-10 ngày"""
    else:
        plan = """✅ BỆNH NHẸ → Ưu tiên Canh Tác + Sinh Học
A) ƯU TIÊN: 3 biện pháp canh tác quan trọng nhất
B) HỖ TRỢ: phương pháp sinh học để tăng sức đề kháng"""

    return f"""Bạn là chuyên gia bảo vệ thực vật Việt Nam. Đưa ra LỜI KHUYÊN CỤ THỂ, THIẾT THỰC cho nông dân.

🌱 Cây trồng: {plant_name or 'Không rõ'}
🦠 Bệnh: {disease_name}
📊 Mức độ tin cậy: {percent}% (Đánh giá: {severity})

📦 THUỐC HÓA HỌC CÓ SẴN ({len(chemical)} sản phẩm)
{_numbered(chemical)}

🌿 PHƯƠNG PHÁP SINH HỌC ({len(biological)} phương pháp)
{_numbered(biological)}

🌾 BIỆN PHÁP CANH TÁC ({len(cultural)} kỹ thuật)
{_numbered(cultural)}

PHƯƠNG ÁN ĐIỀU TRỊ:
{plan}

LƯU Ý AN TOÀN: thiết bị bảo hộ, thời gian cách ly trước thu hoạch, điều kiện thời tiết.

QUY TẮC:
✅ CHỈ khuyên dùng sản phẩm/kỹ thuật CÓ TRONG DANH SÁCH
✅ Số liệu CỤ THỂ (ml, kg, ngày, lần)
✅ Nếu KHÔNG CÓ DATA → nói rõ "Chưa có thông tin cụ thể"
❌ KHÔNG bịa thêm thuốc/kỹ thuật không có trong danh sách

FORMAT: Markdown, ngắn gọn, dễ đọc."""


class AdvisoryGenerator:

    def __init__(self, openai_client=None, timeout: float = ADVISORY_TIMEOUT, model: str = LLM_MODEL_ADVISORY):
        self.openai_client = openai_client
        self.timeout = timeout
        self.model = model

    @property
    def available(self) -> bool:
        return self.openai_client is not None

    async def generate(
        self,
        disease_name: str,
        confidence: float,
        plant_name: Optional[str],
        groups: List[TreatmentGroup],
    ) -> Optional[str]:
        if not self.openai_client:
            logger.warning(f"⚠️ Advisory unavailable for '{disease_name}': OpenAI not configured")
            return None

        logger.info(f"🤖 Generating advice for: {disease_name} on {plant_name}")
        prompt = build_advisory_prompt(disease_name, confidence, plant_name, groups)
        try:
            response = await asyncio.wait_for(
                self.openai_client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=0.4,
                    max_completion_tokens=1200,
                ),
                timeout=self.timeout,
            )
            advice = clean_generated_text(response.choices[0].message.content)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ Advisory timeout after {self.timeout}s for '{disease_name}'")
            return None
        except Exception as e:
            logger.warning(f"⚠️ Failed to generate advice for '{disease_name}': {e}")
            return None

        if not advice:
            logger.warning(f"⚠️ Empty advice for '{disease_name}'")
            return None
        logger.info(f"✅ Generated {len(advice)} chars of advice")
        return advice

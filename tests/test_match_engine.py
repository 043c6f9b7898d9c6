"""Tests for exact keyword matching, relevance ranking and rendering."""

from pagebot.knowledge.content import ContentType, decode_row, decode_rows
from pagebot.knowledge.match_engine import MatchEngine

from conftest import KNOWLEDGE_ROWS, row


def _engine(rows=None, **kwargs):
    return MatchEngine(decode_rows(rows if rows is not None else KNOWLEDGE_ROWS), **kwargs)


def test_find_exact_dorm_scenario_returns_only_that_entry():
    entry = decode_row(row("หอใน", "หอพักนักศึกษาอยู่ติดคณะค่ะ"))
    engine = MatchEngine([entry])

    assert engine.find_exact("หอในเป็นยังไงบ้าง") == [entry]


def test_find_exact_matches_thai_keyword_inside_query():
    matches = _engine().find_exact("ค่าเทอมเท่าไหร่คะ")

    assert [m.answer for m in matches] == ["ค่าเทอม 25,000 บาทต่อภาคค่ะ"]


def test_find_exact_is_case_and_whitespace_insensitive():
    engine = MatchEngine([decode_row(row("  Open House ", "วันที่ 5 ค่ะ"))])

    assert len(engine.find_exact("when is the   OPEN   house?")) == 1
    assert len(engine.find_exact("   open house   ")) == 1
    assert engine.find_exact("openhouse") == []


def test_find_exact_returns_all_matches_in_dataset_order():
    rows = [
        row("ค่าเทอม", "first"),
        row("ทุน", "second"),
        row("ค่าเทอม, ทุน", "third"),
    ]
    matches = _engine(rows).find_exact("ขอข้อมูลทุนและค่าเทอม")

    assert [m.answer for m in matches] == ["first", "second", "third"]


def test_find_exact_ignores_empty_keywords_and_empty_query():
    engine = _engine([row(" , ,", "never")])

    assert engine.find_exact("anything") == []
    assert _engine().find_exact("   ") == []


def test_inactive_entries_never_returned():
    engine = _engine()

    assert engine.find_exact("รับสมัครเมื่อไหร่") == []
    assert all(entry.active for entry in engine.rank("รับสมัคร เมื่อไหร่ มกราคม"))
    assert "เปิดรับสมัครเดือนมกราคมค่ะ" not in [e.answer for e in engine.entries]


def test_rank_map_scenario_scores_answer_match():
    rows = [
        row("ค่าเทอม", "ค่าเทอม 25,000 บาท"),
        row("สถานที่", "ดูแผนที่ได้ที่ลิงก์ map ค่ะ", question="การเดินทาง"),
    ]
    engine = _engine(rows)

    scored = dict((entry.answer, score) for entry, score in engine.score("แผนที่ map ที่ตั้ง"))

    assert scored["ดูแผนที่ได้ที่ลิงก์ map ค่ะ"] > 0
    assert "ค่าเทอม 25,000 บาท" not in scored
    assert [e.answer for e in engine.rank("แผนที่ map ที่ตั้ง")] == ["ดูแผนที่ได้ที่ลิงก์ map ค่ะ"]


def test_rank_keyword_match_is_bidirectional_and_outweighs_fields():
    rows = [
        row("อื่นๆ", "มี parking ด้านหลังค่ะ"),
        row("parking", "-"),
        row("car parking lot", "-"),
    ]
    ranked = _engine(rows).rank("parking")

    # keyword contains token (car parking lot) and token contains keyword (parking) both give +50
    assert [e.keywords for e in ranked[:2]] == [("parking",), ("car parking lot",)]
    assert ranked[2].answer == "มี parking ด้านหลังค่ะ"


def test_rank_scores_symmetric_short_question():
    engine = _engine([row("x", "-", question="map")])

    # token contains question (+10) and question contains token (+10)
    assert engine.score("map")[0][1] == 20
    assert engine.score("maps")[0][1] == 10


def test_rank_multi_word_phrase_bonus():
    engine = _engine([row("zzz", "-", question="bus route to campus")])

    single = engine.score("bus")[0][1]
    multi = engine.score("bus route")[0][1]

    # bus:+10, route:+10, then +2 for each of the two phrase parts found in question
    assert single == 10
    assert multi == 24


def test_dash_answer_scores_nothing():
    engine = _engine([row("zzz", "-", question="")])

    assert engine.score("-") == []
    assert engine.rank("a-b") == []


def test_rank_caps_at_five_and_sorts_descending_with_stable_ties():
    rows = [row(f"kw{i}", f"answer {i}") for i in range(8)]
    rows.append(row("special", "answer special"))
    engine = _engine(rows)

    ranked = engine.rank("answer special")

    assert len(ranked) == 5
    assert ranked[0].answer == "answer special"
    # the remaining ties keep the dataset order
    assert [e.answer for e in ranked[1:]] == ["answer 0", "answer 1", "answer 2", "answer 3"]


def test_rank_respects_custom_limit():
    rows = [row(f"kw{i}", f"answer {i}") for i in range(4)]

    assert len(_engine(rows, rank_limit=2).rank("answer")) == 2


def test_rank_deduplicates_by_identity():
    entry = decode_row(row("map", "map here"))
    other = decode_row(row("map", "map here"))
    engine = MatchEngine([entry, entry, other])

    ranked = engine.rank("map")

    assert len(ranked) == 2
    assert ranked[0] is entry
    assert ranked[1] is other


def test_rank_is_idempotent():
    engine = _engine()

    assert engine.rank("หอพัก ค่าเทอม map") == engine.rank("หอพัก ค่าเทอม map")


def test_rank_empty_query_returns_nothing():
    assert _engine().rank("   ") == []


def test_render_text_and_image_shapes():
    engine = _engine()
    image_entry = next(e for e in engine.entries if e.content_type is ContentType.IMAGE)

    reply = engine.render(image_entry)

    assert reply.decode_error is None
    assert reply.messages == [
        {"text": "ดูแผนที่ได้ที่ลิงก์ map ด้านล่างค่ะ"},
        {"attachment": {"type": "image", "payload": {"url": "https://example.com/map.png", "is_reusable": True}}},
    ]


def test_render_menu_uses_answer_as_template_text_only():
    engine = _engine()
    menu = next(e for e in engine.entries if e.keywords == ("เมนูหลัก",))

    reply = engine.render(menu)

    assert reply.messages == [
        {
            "attachment": {
                "type": "template",
                "payload": {
                    "template_type": "button",
                    "text": "เลือกหัวข้อที่ต้องการค่ะ",
                    "buttons": [{"type": "postback", "title": "ค่าเทอม", "payload": "ค่าเทอม"}],
                },
            }
        }
    ]


def test_render_carousel_sends_answer_then_generic_template():
    entry = decode_row(
        row("หลักสูตร", "หลักสูตรทั้งหมดค่ะ", type_="carousel", media='[{"title": "แพทย์"}, {"title": "พยาบาล"}]')
    )

    reply = MatchEngine([entry]).render(entry)

    assert reply.messages[0] == {"text": "หลักสูตรทั้งหมดค่ะ"}
    assert reply.messages[1]["attachment"]["payload"] == {
        "template_type": "generic",
        "elements": [{"title": "แพทย์"}, {"title": "พยาบาล"}],
    }


def test_render_reports_malformed_menu_without_raising():
    engine = _engine()
    broken = next(e for e in engine.entries if e.keywords == ("เมนูเสีย",))

    reply = engine.render(broken)

    assert reply.messages == []
    assert reply.decode_error is ContentType.MENU


def test_render_text_entry_with_dash_answer_has_no_messages():
    entry = decode_row(row("kw", "-"))

    assert MatchEngine([entry]).render(entry).messages == []

"""
Tests: transcript parsing and offline replay from the CLI.

Run with:
    pytest jd_coach/tests/test_main.py -v
"""

from jd_coach.config import get_settings
from jd_coach.main import main, parse_transcript, run
from jd_coach.models.enums import AudioSource


def test_parse_transcript_tags_and_blank_lines():
    fragments = parse_transcript(
        "[speaker] Tell me about your SQL work\n\n[mic] I tune Postgres queries\nuntagged line\n[mic]   \n",
        "s1",
    )
    assert [(f.source, f.text) for f in fragments] == [
        (AudioSource.SPEAKER, "Tell me about your SQL work"),
        (AudioSource.MICROPHONE, "I tune Postgres queries"),
        (AudioSource.MICROPHONE, "untagged line"),
    ]
    assert all(f.session_id == "s1" for f in fragments)


def test_main_without_arguments_prints_usage(capsys):
    assert main([]) == 2
    assert "python -m jd_coach" in capsys.readouterr().out


def test_replay_produces_report(tmp_path, monkeypatch):
    monkeypatch.setattr("jd_coach.main.setup_logging", lambda level: None)
    monkeypatch.setenv("PERSISTENCE_BACKEND", "file")
    monkeypatch.setenv("DATA_ROOT", str(tmp_path / "data"))
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    monkeypatch.setenv("GROQ_API_KEY", "")
    get_settings.cache_clear()

    jd = tmp_path / "jd.txt"
    jd.write_text("- Must have strong SQL skills with PostgreSQL\n- Build REST APIs in Python\n", encoding="utf-8")
    transcript = tmp_path / "transcript.txt"
    transcript.write_text("[speaker] What databases?\n[mic] I write SQL for PostgreSQL daily\n", encoding="utf-8")

    try:
        report = run(str(jd), str(transcript), "replay-1")
    finally:
        get_settings.cache_clear()

    assert report.startswith("Session: replay-1")
    assert "Must have strong SQL skills with PostgreSQL" in report

import pytest

from dictation_pipeline.utils.text_processing import TextProcessor, join_segment_texts


@pytest.fixture
def processor():
    return TextProcessor()


def test_removes_fillers_and_capitalises(processor):
    assert processor.post_process_text("um so we uh ship it") == "So we ship it"


def test_collapses_stutters(processor):
    assert processor.post_process_text("the the the build failed") == "The build failed"


def test_fixes_contractions(processor):
    assert processor.post_process_text("i'm sure it dont work") == "I'm sure it don't work"


def test_drops_space_before_punctuation(processor):
    assert processor.post_process_text("done , really .") == "Done, really."


@pytest.mark.parametrize("text", ["Thank you for watching!", "[BLANK_AUDIO]", "  thanks for watching.  "])
def test_hallucinations_become_empty(processor, text):
    assert processor.post_process_text(text) == ""


def test_keeps_cli_flags(processor):
    assert processor.post_process_text("run grep -i pattern") == "Run grep -i pattern"


def test_empty_text(processor):
    assert processor.post_process_text("   ") == ""


def test_join_segment_texts():
    assert join_segment_texts(["First part", "", "  second part .", None]) == "First part second part."

"""Tests for request classification."""

from codeagent.request import (
    RequestAnalyzer,
    assess_complexity,
    detect_file_operations,
    detect_intent,
    extract_keywords,
)


def test_detect_intent():
    assert detect_intent("Add a footer component") == "create"
    assert detect_intent("update the navbar colors") == "edit"
    assert detect_intent("remove the unused helper") == "delete"
    assert detect_intent("there is a bug in login") == "fix"
    assert detect_intent("refactor the store") == "refactor"
    assert detect_intent("explain this code") == "general"


def test_intent_uses_whole_words():
    """Test substrings such as 'address' do not count as 'add'."""
    assert detect_intent("show the address field") == "general"


def test_detect_file_operations():
    assert detect_file_operations("Create a React component") == ["create_component"]
    assert detect_file_operations("write a custom hook with useEffect") == ["create_hook"]
    assert detect_file_operations("update package.json and add a css file") == ["create_style", "update_config"]
    assert detect_file_operations("add a user profile page") == []


def test_extract_keywords():
    """Test stopwords, short words and duplicates are dropped."""
    assert extract_keywords("Please add the footer, the FOOTER with links!") == ["footer", "links"]


def test_assess_complexity():
    assert assess_complexity("rename a variable") == "low"
    assert assess_complexity("add a footer component") == "high"
    assert assess_complexity(" ".join(["word"] * 25)) == "medium"
    assert assess_complexity(" ".join(["word"] * 60)) == "high"


def test_analyzer_combines_results():
    analysis = RequestAnalyzer().analyze("add a footer component", current_file="src/App.jsx")

    assert analysis.intent == "create"
    assert analysis.file_operations == ["create_component"]
    assert analysis.keywords == ["footer", "component"]
    assert analysis.complexity == "high"
    assert analysis.current_file == "src/App.jsx"

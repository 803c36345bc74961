import json

import pytest


SCENARIO_DRAFT = "History: chest pain.\n\nPlan: observe."
SCENARIO_FINAL = "History: chest pain for 3 days.\n\nPlan: observe overnight, discharge am."


def _analysis_document(**overrides) -> dict:
    data = {
        "detectedSectionOrder": ["greeting", "history", "examination", "impression", "plan", "signoff"],
        "detectedSectionInclusion": {"history": 0.95, "medications": 0.1},
        "detectedSectionVerbosity": {"plan": "brief", "history": "detailed"},
        "detectedPhrasing": {"plan": ["will arrange", "recommend proceeding with"]},
        "detectedAvoidedPhrases": {"impression": ["It is felt that"]},
        "detectedVocabulary": {"commence": "start"},
        "detectedTerminologyLevel": "specialist",
        "detectedGreetingStyle": "formal",
        "detectedClosingStyle": "formal",
        "detectedSignoff": "Yours sincerely,",
        "detectedFormalityLevel": "formal",
        "detectedParagraphStructure": "short",
        "confidence": {
            "sectionOrder": 0.8,
            "sectionInclusion": 0.7,
            "sectionVerbosity": 0.75,
            "phrasingPreferences": 0.7,
            "avoidedPhrases": 0.6,
            "vocabularyMap": 0.65,
            "terminologyLevel": 0.9,
            "greetingStyle": 0.85,
            "closingStyle": 0.8,
            "signoffTemplate": 0.9,
            "formalityLevel": 0.8,
            "paragraphStructure": 0.7,
        },
        "phrasePatterns": [{"phrase": "will arrange", "sectionType": "plan", "frequency": 4, "action": "preferred"}],
        "sectionOrderPatterns": [{"order": ["history", "plan"], "frequency": 5}],
        "insights": ["Prefers brief plans"],
    }
    data.update(overrides)
    return data


class FakeAnalyzer:
    def __init__(self, content=None, model_id="fake-model", error=None):
        from letterstyle.style.analyzer import AnalyzerResponse

        self._response_cls = AnalyzerResponse
        self.content = content if content is not None else wrap_json(_analysis_document())
        self.model_id = model_id
        self.error = error
        self.calls = []

    def analyze(self, prompt, system_prompt):
        self.calls.append((prompt, system_prompt))
        if self.error is not None:
            raise self.error
        return self._response_cls(self.content, self.model_id)


def wrap_json(data) -> str:
    return "Here is the analysis.\n\n```json\n" + json.dumps(data) + "\n```\n"


@pytest.fixture
def scenario():
    return SCENARIO_DRAFT, SCENARIO_FINAL


@pytest.fixture
def analysis_reply():
    """Build a fenced analyzer reply, overriding top-level fields."""
    def _build(**overrides):
        return wrap_json(_analysis_document(**overrides))
    return _build


@pytest.fixture
def make_analyzer():
    return FakeAnalyzer


@pytest.fixture
def session_factory():
    from letterstyle.database import MEMORY_URL, create_session_factory

    factory = create_session_factory(MEMORY_URL, create_schema=True)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def config(session_factory):
    from letterstyle.config_store import ConfigStore
    return ConfigStore(session_factory)


@pytest.fixture
def service(session_factory):
    from letterstyle.style.cache import TTLProfileCache
    from letterstyle.style.profiles import ProfileService
    return ProfileService(session_factory, cache=TTLProfileCache(ttl_seconds=60))


@pytest.fixture
def learner(service, config):
    from letterstyle.style.pipeline import StyleLearner
    return StyleLearner(service, analyzer=FakeAnalyzer(), config=config)

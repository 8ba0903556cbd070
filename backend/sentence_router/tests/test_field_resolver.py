import pytest

from conftest import FakeModel
from sentence_router.models.endpoint import Endpoint, Parameter
from sentence_router.services.field_resolver import (
    FieldResolver,
    first_action_fields,
    format_parameters,
    match_deterministic,
    render_value,
)
from sentence_router.services.pipeline_errors import JSONParseError, MalformedOutputError


def _output(fields):
    return {"endpoints": [{"endpoint": "schedule meeting", "fields": fields}]}


def _values(parameters):
    return {p.name: p.value for p in parameters}


# =============================================================================
# OUTPUT SHAPE
# =============================================================================

@pytest.mark.parametrize("json_output", [
    [],
    {"actions": []},
    {"endpoints": {}},
    {"endpoints": []},
    {"endpoints": ["schedule meeting"]},
    {"endpoints": [{"endpoint": "x"}]},
    {"endpoints": [{"endpoint": "x", "fields": ["a"]}]},
])
def test_first_action_fields_rejects_bad_shapes(json_output):
    with pytest.raises(MalformedOutputError):
        first_action_fields(json_output)


def test_first_action_fields_uses_first_action():
    json_output = {"endpoints": [
        {"endpoint": "a", "fields": {"x": 1}},
        {"endpoint": "b", "fields": {"y": 2}},
    ]}
    assert first_action_fields(json_output) == {"x": 1}


# =============================================================================
# VALUE RENDERING
# =============================================================================

@pytest.mark.parametrize("value, expected", [
    ("tomorrow at 2pm", "tomorrow at 2pm"),
    ("", ""),
    (None, None),
    (3, "3"),
    (2.5, "2.5"),
    (True, "true"),
    (["John", "Mary"], '["John","Mary"]'),
    ({"city": "Paris"}, '{"city":"Paris"}'),
])
def test_render_value(value, expected):
    assert render_value(value) == expected


# =============================================================================
# DETERMINISTIC TIERS
# =============================================================================

def test_exact_name_beats_alternative(meeting_endpoint):
    time_param = meeting_endpoint.parameters[0]
    fields = {"date": "tomorrow", "time": "2pm"}
    assert match_deterministic(fields, time_param) == "2pm"


def test_alternatives_tried_in_declared_order(meeting_endpoint):
    participants = meeting_endpoint.parameters[1]
    # declared order: attendees, people, with, invitees
    fields = {"invitees": "Mary", "people": "John"}
    assert match_deterministic(fields, participants) == "John"


def test_null_exact_value_falls_through_to_alternatives():
    time_param = Parameter(name="time", alternatives=["date", "when"])
    assert match_deterministic({"time": None, "date": None, "when": "2pm"}, time_param) == "2pm"
    assert match_deterministic({"time": None}, time_param) is None


@pytest.mark.asyncio
async def test_null_exact_value_resolved_without_fallback(meeting_endpoint, prompts, model_params):
    model = FakeModel()
    resolver = FieldResolver(model, prompts)
    fields = {"time": None, "when": "2pm", "participants": "John", "topic": "roadmap"}

    parameters = await resolver.resolve(_output(fields), meeting_endpoint, model_params)

    assert _values(parameters)["time"] == "2pm"
    assert model.call_count == 0


def test_no_deterministic_match_returns_none(meeting_endpoint):
    assert match_deterministic({"unrelated": "x"}, meeting_endpoint.parameters[2]) is None


def test_format_parameters_lists_alternatives():
    params = [
        Parameter(name="time", description="When", alternatives=["date", "when"]),
        Parameter(name="topic", description="Subject"),
    ]
    assert format_parameters(params) == "time: When (alternatives: date, when)\ntopic: Subject (alternatives: )"


# =============================================================================
# RESOLUTION
# =============================================================================

@pytest.mark.asyncio
async def test_no_fallback_when_everything_resolves(meeting_endpoint, prompts, model_params):
    model = FakeModel()
    resolver = FieldResolver(model, prompts)

    parameters = await resolver.resolve(
        _output({"time": "2pm", "with": "John", "subject": "budget"}),
        meeting_endpoint,
        model_params,
    )

    assert model.call_count == 0
    assert _values(parameters) == {"time": "2pm", "participants": "John", "topic": "budget"}


@pytest.mark.asyncio
async def test_single_fallback_fills_only_unresolved(meeting_endpoint, prompts, model_params):
    # Model also proposes a different time; the exact match must win
    model = FakeModel(['Mapping: {"time": "noon", "participants": "John", "topic": "roadmap",}'])
    resolver = FieldResolver(model, prompts)

    parameters = await resolver.resolve(
        _output({"time": "2pm", "who": "John", "regarding": "roadmap"}),
        meeting_endpoint,
        model_params,
    )

    assert model.call_count == 1
    assert _values(parameters) == {"time": "2pm", "participants": "John", "topic": "roadmap"}


@pytest.mark.asyncio
async def test_fallback_prompt_contains_fields_and_parameters(meeting_endpoint, prompts, model_params):
    model = FakeModel(["{}"])
    resolver = FieldResolver(model, prompts, "v1")

    await resolver.resolve(_output({"time": "2pm"}), meeting_endpoint, model_params)

    prompt, _ = model.calls[0]
    assert 'time: "2pm"' in prompt
    assert "participants: Who attends the meeting (alternatives: attendees, people, with, invitees)" in prompt
    assert "{input_fields}" not in prompt


@pytest.mark.asyncio
async def test_fallback_prompt_keeps_placeholder_shaped_values(meeting_endpoint, prompts, model_params):
    model = FakeModel(["{}"])
    resolver = FieldResolver(model, prompts, "v1")

    await resolver.resolve(_output({"time": "{parameters}"}), meeting_endpoint, model_params)

    prompt, _ = model.calls[0]
    assert 'time: "{parameters}"' in prompt
    assert prompt.count("participants: Who attends the meeting") == 1


@pytest.mark.asyncio
async def test_unresolved_parameters_stay_none(meeting_endpoint, prompts, model_params):
    model = FakeModel(['{"topic": null}'])
    resolver = FieldResolver(model, prompts)

    parameters = await resolver.resolve(_output({"time": "2pm"}), meeting_endpoint, model_params)

    values = _values(parameters)
    assert values["time"] == "2pm"
    assert values["participants"] is None
    assert values["topic"] is None
    assert [p.name for p in parameters] == ["time", "participants", "topic"]


@pytest.mark.asyncio
async def test_catalog_parameters_are_not_mutated(meeting_endpoint, prompts, model_params):
    resolver = FieldResolver(FakeModel(), prompts)

    parameters = await resolver.resolve(
        _output({"time": "2pm", "participants": "John", "topic": "x"}),
        meeting_endpoint,
        model_params,
    )

    assert all(p.value is not None for p in parameters)
    assert all(p.value is None for p in meeting_endpoint.parameters)
    assert parameters[0].required is True


@pytest.mark.asyncio
async def test_non_string_values_rendered_as_json(prompts, model_params):
    endpoint = Endpoint(
        id="invite",
        text="invite people",
        parameters=[Parameter(name="people"), Parameter(name="count")],
    )
    resolver = FieldResolver(FakeModel(), prompts)

    parameters = await resolver.resolve(
        _output({"people": ["John", "Mary"], "count": 2}), endpoint, model_params
    )

    assert _values(parameters) == {"people": '["John","Mary"]', "count": "2"}


@pytest.mark.asyncio
async def test_unparseable_fallback_raises(meeting_endpoint, prompts, model_params):
    resolver = FieldResolver(FakeModel(["{not json}"]), prompts)

    with pytest.raises(JSONParseError):
        await resolver.resolve(_output({}), meeting_endpoint, model_params)


@pytest.mark.asyncio
async def test_endpoint_without_parameters(prompts, model_params):
    endpoint = Endpoint(id="ping", text="ping")
    model = FakeModel()

    parameters = await FieldResolver(model, prompts).resolve(_output({"x": 1}), endpoint, model_params)

    assert parameters == []
    assert model.call_count == 0

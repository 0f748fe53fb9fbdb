"""Document accessor behaviour that must hold for both backends."""

import pytest

from fake_service import sign_in
from therapynotes.errors import ApiError, ConflictError, NotFoundError
from therapynotes.models import DocumentType
from therapynotes.time_utils import today_date_string

CLIENT = 'client-contract'
OTHER_CLIENT = 'client-contract-2'


async def _ready(api):
    await sign_in(api)
    return api.documents


@pytest.mark.asyncio
async def test_create_then_get_returns_same_record(api):
    docs = await _ready(api)
    created = await docs.create(CLIENT, 'progress_note', {'notes': 'Initial session'}, date='2025-02-01')

    assert created.document_type is DocumentType.PROGRESS_NOTE
    assert created.client_id == CLIENT
    assert created.status == 'draft'
    assert created.date == '2025-02-01'
    assert created.created_at

    fetched = await docs.get(CLIENT, created.id)
    assert fetched is not None
    assert fetched.id == created.id
    assert fetched.content == {'notes': 'Initial session'}


@pytest.mark.asyncio
async def test_duplicate_id_conflicts(api):
    docs = await _ready(api)
    await docs.create(CLIENT, 'diagnosis', {'icd10Code': 'F41.1'}, id='doc-fixed-id')

    with pytest.raises(ConflictError) as excinfo:
        await docs.create(CLIENT, 'diagnosis', {'icd10Code': 'F32.0'}, id='doc-fixed-id')
    assert excinfo.value.status == 409

    with pytest.raises(ConflictError):
        await docs.create(OTHER_CLIENT, 'intake', id='doc-fixed-id')

    remaining = await docs.list(CLIENT)
    assert [d.content['icd10Code'] for d in remaining] == ['F41.1']


@pytest.mark.asyncio
async def test_list_filters_by_type_and_status(api):
    docs = await _ready(api)
    await docs.create(CLIENT, 'progress_note', {'notes': 'a'}, date='2025-01-01')
    complete = await docs.create(CLIENT, 'progress_note', {'notes': 'b'}, status='complete', date='2025-01-08')
    await docs.create(CLIENT, 'diagnosis', {'icd10Code': 'F41.1'})

    assert len(await docs.list(CLIENT)) == 3
    notes = await docs.list(CLIENT, 'progress_note')
    assert {d.document_type for d in notes} == {DocumentType.PROGRESS_NOTE}
    assert len(notes) == 2

    filtered = await docs.list(CLIENT, DocumentType.PROGRESS_NOTE, 'complete')
    assert [d.id for d in filtered] == [complete.id]

    again = await docs.list(CLIENT, DocumentType.PROGRESS_NOTE, 'complete')
    assert [d.id for d in again] == [d.id for d in filtered]


@pytest.mark.asyncio
async def test_absent_lookups_are_not_errors(api):
    docs = await _ready(api)
    assert await docs.list('client-without-documents') == []
    assert await docs.get(CLIENT, 'no-such-document') is None
    assert await docs.latest_progress_note('client-without-documents') is None
    assert await docs.current_diagnosis('client-without-documents') is None
    assert await docs.completed_form_types('client-without-documents') == []


@pytest.mark.asyncio
async def test_mutating_missing_document_fails(api):
    docs = await _ready(api)
    await docs.create(CLIENT, 'intake')

    with pytest.raises(NotFoundError) as excinfo:
        await docs.update(CLIENT, 'no-such-document', {'status': 'complete'})
    assert excinfo.value.status == 404

    with pytest.raises(NotFoundError):
        await docs.delete(CLIENT, 'no-such-document')


@pytest.mark.asyncio
async def test_update_merges_content_and_replaces_top_level(api):
    docs = await _ready(api)
    created = await docs.create(CLIENT, 'progress_note', {'notes': 'draft text', 'duration': 50}, date='2025-01-02')

    updated = await docs.update(
        CLIENT, created.id, {'content': {'notes': 'final text', 'mood': 'euthymic'}, 'status': 'complete'}
    )
    assert updated.content == {'notes': 'final text', 'duration': 50, 'mood': 'euthymic'}
    assert updated.status == 'complete'
    assert updated.date == '2025-01-02'

    assert (await docs.delete(CLIENT, created.id))['success'] is True
    assert await docs.get(CLIENT, created.id) is None


@pytest.mark.asyncio
@pytest.mark.parametrize('status', ['bogus', 'complete'])
async def test_update_rejects_status_outside_type_vocabulary(api, status):
    docs = await _ready(api)
    created = await docs.create(CLIENT, 'diagnosis', {'primary': 'F41.1'}, status='active')

    with pytest.raises(ApiError) as excinfo:
        await docs.update(CLIENT, created.id, {'status': status, 'content': {'primary': 'F32.1'}})
    assert excinfo.value.status == 400

    unchanged = await docs.get(CLIENT, created.id)
    assert unchanged.status == 'active'
    assert unchanged.content == {'primary': 'F41.1'}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    'kwargs',
    [
        {'document_type': 'progress_note', 'content': {'date': '2025-01-01'}},
        {'document_type': 'progress_note', 'content': {'status': 'complete'}},
        {'document_type': 'diagnosis', 'status': 'complete'},
        {'document_type': 'billing_record'},
    ],
)
async def test_invalid_documents_rejected_locally(api, service, kwargs):
    docs = await _ready(api)
    before = len(service.requests)
    with pytest.raises(ApiError) as excinfo:
        await docs.create(CLIENT, **kwargs)
    assert excinfo.value.status == 400
    assert len(service.requests) == before


@pytest.mark.asyncio
async def test_derived_views(api):
    docs = await _ready(api)
    await docs.create(CLIENT, 'intake', {'presentingProblems': ['anxiety']}, date='2024-12-01')
    await docs.create(CLIENT, 'diagnosis', {'icd10Code': 'F43.10', 'isPrincipal': True}, status='resolved', date='2024-12-02')
    await docs.create(CLIENT, 'diagnosis', {'icd10Code': 'F32.0', 'isPrincipal': False}, status='active', date='2024-12-05')
    await docs.create(CLIENT, 'diagnosis', {'icd10Code': 'F41.1', 'isPrincipal': True}, status='provisional', date='2024-12-03')
    await docs.create(CLIENT, 'treatment_plan', {'goals': []}, status='draft', date='2024-12-10')
    await docs.create(CLIENT, 'treatment_plan', {'goals': [{'id': 'goal-1'}]}, status='active', date='2024-12-04')
    await docs.create(CLIENT, 'progress_note', {'notes': 'older'}, status='complete', date='2025-01-03')
    await docs.create(CLIENT, 'progress_note', {'notes': 'newer'}, status='complete', date='2025-01-10')

    latest = await docs.latest_progress_note(CLIENT)
    assert latest['notes'] == 'newer'
    assert latest['date'] == '2025-01-10'

    assert [s['notes'] for s in await docs.sessions(CLIENT)] == ['newer', 'older']

    diagnosis = await docs.current_diagnosis(CLIENT)
    assert diagnosis['icd10Code'] == 'F41.1'
    assert diagnosis['dateOfDiagnosis'] == '2024-12-03'

    active = await docs.diagnoses(CLIENT, 'active')
    assert [d['icd10Code'] for d in active] == ['F32.0']

    plan = await docs.active_treatment_plan(CLIENT)
    assert plan['goals'] == [{'id': 'goal-1'}]

    intake = await docs.client_intake(CLIENT)
    assert intake is not None and intake.content['presentingProblems'] == ['anxiety']

    assert await docs.completed_form_types(CLIENT) == ['Progress Note', 'Diagnosis', 'Treatment Plan', 'Intake']


@pytest.mark.asyncio
async def test_note_helpers(api):
    docs = await _ready(api)
    saved = await docs.save_note(
        CLIENT,
        {
            'date': '2025-02-14',
            'status': 'draft',
            'duration': 50,
            'interventions': [{'label': 'Grounding', 'theme': {'string': 'present moment'}, 'selections': None}],
        },
    )
    note = saved['note']
    assert note['status'] == 'complete'
    assert note['date'] == '2025-02-14'
    assert note['interventions'] == [
        {'label': 'Grounding', 'theme': 'present moment', 'selections': {}, 'notes': ''}
    ]
    stored = await docs.get(CLIENT, note['id'])
    assert 'date' not in stored.content and 'status' not in stored.content

    updated = await docs.update_note(CLIENT, note['id'], {'date': '2025-02-15', 'duration': 45})
    assert updated['date'] == '2025-02-15'
    assert updated['duration'] == 45

    diagnosis = await docs.create_diagnosis(CLIENT, {'icd10Code': 'F41.1', 'description': 'GAD'})
    with pytest.raises(NotFoundError):
        await docs.update_note(CLIENT, diagnosis['id'], {'duration': 10})
    with pytest.raises(NotFoundError):
        await docs.delete_note(CLIENT, 'missing-note')

    await docs.delete_note(CLIENT, note['id'])
    assert await docs.latest_progress_note(CLIENT) is None


@pytest.mark.asyncio
async def test_diagnosis_helpers(api):
    docs = await _ready(api)
    created = await docs.create_diagnosis(CLIENT, {'icd10Code': 'F41.1', 'description': 'GAD', 'isPrincipal': True})
    assert created['status'] == 'provisional'
    assert created['dateOfDiagnosis'] == today_date_string()

    updated = await docs.update_diagnosis(
        CLIENT, created['id'], {'status': 'resolved', 'dateResolved': '2025-03-01'}
    )
    assert updated['status'] == 'resolved'
    assert updated['dateResolved'] == '2025-03-01'
    assert await docs.current_diagnosis(CLIENT) is None


@pytest.mark.asyncio
async def test_seeded_client_views(simulated, make_client):
    api = make_client()
    docs = await _ready(api)

    diagnosis = await docs.current_diagnosis('client-001')
    assert diagnosis['icd10Code'] == 'F41.1'
    assert (await docs.latest_progress_note('client-001'))['date'] == '2025-01-10'
    assert await docs.completed_form_types('client-001') == [
        'Progress Note',
        'Diagnosis',
        'Treatment Plan',
        'Intake',
        'Consultation',
    ]
    assert (await docs.current_diagnosis('client-002'))['status'] == 'provisional'


@pytest.mark.asyncio
async def test_enveloped_document_lists(networked, make_client, service):
    api = make_client()
    docs = await _ready(api)
    service.envelope = True
    created = await docs.create(CLIENT, 'intake')
    assert [d.id for d in await docs.list(CLIENT)] == [created.id]

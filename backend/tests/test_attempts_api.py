import pytest
from fastapi.testclient import TestClient
from sqlmodel import select

from quizbuilder import models, repositories
from quizbuilder.main import app

from conftest import auth_headers, quiz_payload

client = TestClient(app)


@pytest.fixture
def quiz(creator_headers, category_id):
    r = client.post('/builder/quizzes', json=quiz_payload(category_id), headers=creator_headers)
    assert r.status_code == 201
    return r.json()


def _answers(quiz, single_idx=0, multi_idxs=(0, 1), text='An essay'):
    single_q, multi_q, long_q = quiz['questions']
    return [
        {'question_type': 'single_choice', 'question_id': single_q['id'],
         'answer_id': single_q['answers'][single_idx]['id']},
        {'question_type': 'multiple_choice', 'question_id': multi_q['id'],
         'answer_ids': [multi_q['answers'][i]['id'] for i in multi_idxs]},
        {'question_type': 'long_answer', 'question_id': long_q['id'], 'text': text},
    ]


def _submit(quiz, answers, name='Ada', headers=None):
    return client.post(f"/quizzes/{quiz['id']}/attempts",
                       json={'user_full_name': name, 'answers': answers}, headers=headers or {})


def test_perfect_choice_answers_score_by_points(quiz, session):
    r = _submit(quiz, _answers(quiz))
    assert r.status_code == 201, r.text
    body = r.json()
    # 20 of 25 points: the long answer waits for manual grading
    assert body['score'] == 80

    rows = repositories.AttemptRepository(session).list_responses(body['attempt_id'])
    assert len(rows) == 4  # one single, two fanned-out multiple, one long
    attempt = session.get(models.QuizAttempt, body['attempt_id'])
    assert attempt.user_id is None
    assert attempt.user_full_name == 'Ada'
    assert attempt.status == models.AttemptStatus.completed
    assert session.get(models.Quiz, quiz['id']).total_attempts == 1


def test_wrong_answers_score_zero(quiz):
    r = _submit(quiz, _answers(quiz, single_idx=1, multi_idxs=(0,)))
    assert r.status_code == 201
    assert r.json()['score'] == 0


def test_review_matches_submission(quiz):
    attempt = _submit(quiz, _answers(quiz, single_idx=1, multi_idxs=(0, 1), text='Gravity')).json()
    r = client.get(f"/quizzes/{quiz['id']}/attempts/{attempt['attempt_id']}")
    assert r.status_code == 200
    body = r.json()
    assert body['score'] == attempt['score'] == 40
    assert body['user_full_name'] == 'Ada'
    single, multi, long_ = body['questions']
    assert single['is_correct'] is False
    assert single['answer_id'] == quiz['questions'][0]['answers'][1]['id']
    assert single['correct_answer_ids'] == [quiz['questions'][0]['answers'][0]['id']]
    assert multi['is_correct'] is True and multi['points_earned'] == 10
    assert sorted(multi['answer_ids']) == sorted(a['id'] for a in quiz['questions'][1]['answers'][:2])
    assert long_['text_response'] == 'Gravity' and long_['is_correct'] is False


def test_review_requires_matching_quiz(quiz, creator_headers, category_id):
    attempt = _submit(quiz, _answers(quiz)).json()
    other = client.post('/builder/quizzes', json=quiz_payload(category_id), headers=creator_headers).json()
    assert client.get(f"/quizzes/{other['id']}/attempts/{attempt['attempt_id']}").status_code == 404
    assert client.get(f"/quizzes/{quiz['id']}/attempts/9999").status_code == 404


def test_authenticated_attempt_is_linked(quiz):
    headers = auth_headers('respondent-7')
    r = _submit(quiz, _answers(quiz), headers=headers)
    assert r.status_code == 201
    recent = client.get('/me/attempts', headers=headers).json()
    assert [a['attempt_id'] for a in recent] == [r.json()['attempt_id']]
    assert recent[0]['quiz']['title'] == 'Planets'
    assert client.get('/me/attempts', headers=auth_headers('someone-else')).json() == []


def test_invalid_token_is_rejected_even_for_anonymous_routes(quiz):
    r = _submit(quiz, _answers(quiz), headers={'Authorization': 'Bearer nope'})
    assert r.status_code == 401


@pytest.mark.parametrize("mutate", [
    lambda a: a[:2],                                            # unanswered question
    lambda a: a + [a[0]],                                       # answered twice
    lambda a: [dict(a[0], answer_id=a[1]['answer_ids'][0])] + a[1:],  # answer from another question
    lambda a: [dict(a[1], question_id=a[0]['question_id'])] + a[1:],  # wrong variant for the type
])
def test_bad_submissions_store_nothing(quiz, session, mutate):
    r = _submit(quiz, mutate(_answers(quiz)))
    assert r.status_code == 400
    assert session.exec(select(models.QuizAttempt)).all() == []
    assert session.exec(select(models.QuizResponse)).all() == []


def test_empty_multiple_choice_selection_is_rejected(quiz):
    answers = _answers(quiz)
    answers[1]['answer_ids'] = []
    assert _submit(quiz, answers).status_code == 422


def test_name_is_required(quiz):
    assert _submit(quiz, _answers(quiz), name='').status_code == 422
    assert _submit(quiz, _answers(quiz), name='   ').status_code == 400


def test_drafts_cannot_be_attempted(creator_headers, category_id):
    draft = client.post('/builder/quizzes', json=quiz_payload(category_id, status='draft'),
                        headers=creator_headers).json()
    assert _submit(draft, _answers(draft)).status_code == 404


def test_failed_response_insert_leaves_no_attempt(quiz, session, monkeypatch):
    from sqlalchemy.exc import OperationalError
    from sqlmodel import Session
    original_add = Session.add

    def failing_add(self, instance, *args, **kwargs):
        if isinstance(instance, models.QuizResponse):
            raise OperationalError("INSERT INTO quiz_responses", {}, Exception("disk I/O error"))
        return original_add(self, instance, *args, **kwargs)

    monkeypatch.setattr(Session, "add", failing_add)
    r = _submit(quiz, _answers(quiz))
    monkeypatch.undo()

    assert r.status_code == 503
    assert 'retry' in r.json()['detail']
    session.expire_all()
    assert session.exec(select(models.QuizAttempt)).all() == []
    assert session.get(models.Quiz, quiz['id']).total_attempts == 0


def test_concurrent_respondents_do_not_interfere(quiz, session):
    first = _submit(quiz, _answers(quiz), name='Ada').json()
    second = _submit(quiz, _answers(quiz, single_idx=1), name='Grace').json()
    assert first['attempt_id'] != second['attempt_id']
    repo = repositories.AttemptRepository(session)
    assert {r.attempt_id for r in repo.list_responses(first['attempt_id'])} == {first['attempt_id']}
    assert len(repo.list_responses(second['attempt_id'])) == 4
    assert session.get(models.Quiz, quiz['id']).total_attempts == 2


def test_rate_limit(quiz, monkeypatch):
    from quizbuilder.config import settings
    monkeypatch.setattr(settings, "ATTEMPT_RATE_LIMIT_PER_MIN", 1)
    assert _submit(quiz, _answers(quiz)).status_code == 201
    second = _submit(quiz, _answers(quiz))
    assert second.status_code == 429
    assert 'Retry-After' in second.headers


def test_rate_limit_keys_do_not_grow_with_quizzes(creator_headers, category_id):
    from quizbuilder.main import _attempt_rate_limiter
    for _ in range(5):
        q = client.post('/builder/quizzes', json=quiz_payload(category_id), headers=creator_headers).json()
        assert _submit(q, _answers(q)).status_code == 201
    assert len(_attempt_rate_limiter) == 1


@pytest.fixture
def alice_attempt(quiz):
    r = _submit(quiz, _answers(quiz, text='x'), name='Alice', headers=auth_headers('alice'))
    assert r.status_code == 201
    return f"/quizzes/{quiz['id']}/attempts/{r.json()['attempt_id']}"


def test_linked_attempt_visible_to_its_owner(alice_attempt):
    r = client.get(alice_attempt, headers=auth_headers('alice'))
    assert r.status_code == 200
    assert r.json()['user_full_name'] == 'Alice'


def test_linked_attempt_visible_to_quiz_creator(alice_attempt, creator_headers):
    assert client.get(alice_attempt, headers=creator_headers).status_code == 200


@pytest.mark.parametrize("headers", [{}, auth_headers('mallory')])
def test_linked_attempt_hidden_from_others(alice_attempt, headers):
    assert client.get(alice_attempt, headers=headers).status_code == 404


def test_anonymous_attempt_visible_by_link(quiz):
    attempt = _submit(quiz, _answers(quiz)).json()
    url = f"/quizzes/{quiz['id']}/attempts/{attempt['attempt_id']}"
    assert client.get(url).status_code == 200
    assert client.get(url, headers=auth_headers('mallory')).status_code == 200


def _with_ids(payload, quiz, questions=None):
    """Copy stored question and answer ids into `payload`, optionally only for some question indexes."""
    for i, (qin, q) in enumerate(zip(payload['questions'], quiz['questions'])):
        if questions is not None and i not in questions:
            continue
        qin['id'] = q['id']
        for ain, a in zip(qin.get('answers', []), q['answers']):
            ain['id'] = a['id']
    return payload


def test_edit_with_ids_keeps_attempt_history(quiz, creator_headers, category_id):
    attempt = _submit(quiz, _answers(quiz)).json()
    payload = _with_ids(quiz_payload(category_id, title='Planets and moons'), quiz)
    r = client.put(f"/builder/quizzes/{quiz['id']}", json=payload, headers=creator_headers)
    assert r.status_code == 200, r.text
    edited = r.json()
    assert edited['title'] == 'Planets and moons'
    assert [q['id'] for q in edited['questions']] == [q['id'] for q in quiz['questions']]
    assert ([a['id'] for a in edited['questions'][1]['answers']]
            == [a['id'] for a in quiz['questions'][1]['answers']])

    review = client.get(f"/quizzes/{quiz['id']}/attempts/{attempt['attempt_id']}").json()
    assert [q['answered'] for q in review['questions']] == [True, True, True]
    assert [q['is_correct'] for q in review['questions']] == [True, True, False]
    assert review['score'] == 80

    stats = client.get(f"/builder/quizzes/{quiz['id']}/stats", headers=creator_headers).json()
    single, multi, _ = stats['questions']
    assert (single['answered'], single['correct']) == (1, 1)
    assert (multi['answered'], multi['correct']) == (1, 1)


def test_edit_without_ids_replaces_questions(quiz, creator_headers, category_id):
    attempt = _submit(quiz, _answers(quiz)).json()
    # a newer quiz keeps SQLite from handing the freed row ids back out
    client.post('/builder/quizzes', json=quiz_payload(category_id), headers=creator_headers)
    payload = _with_ids(quiz_payload(category_id), quiz, questions={0})
    edited = client.put(f"/builder/quizzes/{quiz['id']}", json=payload, headers=creator_headers).json()
    old_ids = [q['id'] for q in quiz['questions']]
    new_ids = [q['id'] for q in edited['questions']]
    assert new_ids[0] == old_ids[0]
    assert not set(new_ids[1:]) & set(old_ids)

    review = client.get(f"/quizzes/{quiz['id']}/attempts/{attempt['attempt_id']}").json()
    assert [q['answered'] for q in review['questions']] == [True, False, False]
    assert review['score'] == 80


def test_edit_drops_answers_left_out(quiz, creator_headers, category_id):
    payload = _with_ids(quiz_payload(category_id), quiz)
    payload['questions'][1]['answers'].pop()
    edited = client.put(f"/builder/quizzes/{quiz['id']}", json=payload, headers=creator_headers).json()
    kept = [a['id'] for a in edited['questions'][1]['answers']]
    assert kept == [a['id'] for a in quiz['questions'][1]['answers'][:2]]
    assert [a['order_number'] for a in edited['questions'][1]['answers']] == [1, 2]

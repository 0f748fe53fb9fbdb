"""Seed data and deterministic placeholders for the simulated backend.

Everything here is plain data; :func:`seed_state` hands out deep copies so each
simulated backend instance mutates its own fixtures.
"""

from __future__ import annotations

import copy
import zlib
from typing import Any, Dict, List, Optional

MOCK_SESSION = "mock-session-token"
MOCK_MFA_SECRET = "JBSWY3DPEHPK3PXP"
MFA_ISSUER = "TherapyNotes"

USER: Dict[str, Any] = {
    "id": "user-001",
    "email": "drkhorney@contextmatterstherapy.com",
    "name": "Karen Horney",
    "license": "MD",
    "role": "admin",
    "groups": ["admin"],
    "mfaEnabled": True,
}


def _client(client_id: str, name: str, **fields: Any) -> Dict[str, Any]:
    base: Dict[str, Any] = {
        "id": client_id,
        "name": name,
        "clientType": "Individual",
        "lastFormType": "Progress Note",
        "lastDelivery": "In Person",
        "status": "active",
        "isArchived": False,
        "archivedAt": None,
        "totalSessions": 0,
        "lastSessionDate": None,
        "sessionBasis": "weekly",
        "paymentType": "private-pay",
        "payer": None,
        "riskLevel": "standard",
        "referralSource": None,
        "internalNotes": None,
    }
    base.update(fields)
    return base


CLIENTS: List[Dict[str, Any]] = [
    _client(
        "client-001",
        "SM",
        createdAt="2024-11-15",
        totalSessions=12,
        lastSessionDate="2025-01-10",
        paymentType="insurance",
        payer="Blue Cross Blue Shield",
        referralSource="PCP: Dr. Martinez",
        internalNotes="Prefers morning appointments.",
    ),
    _client(
        "client-002",
        "JK",
        lastDelivery="Video",
        createdAt="2024-10-22",
        totalSessions=8,
        lastSessionDate="2025-01-09",
        riskLevel="elevated",
        referralSource="Psychology Today",
    ),
    _client(
        "client-003",
        "ML",
        clientType="Couple",
        createdAt="2024-12-01",
        totalSessions=5,
        lastSessionDate="2025-01-08",
        sessionBasis="biweekly",
        paymentType="sliding-scale",
        riskLevel=None,
    ),
    _client(
        "client-006",
        "BN",
        lastFormType="Discharge",
        status="discharged",
        isArchived=True,
        archivedAt="2024-12-20",
        createdAt="2024-03-01",
        totalSessions=24,
        lastSessionDate="2024-12-15",
        sessionBasis=None,
        paymentType="insurance",
        payer="United Healthcare",
        riskLevel=None,
    ),
]


def _doc(
    doc_id: str,
    document_type: str,
    client_id: str,
    status: str,
    date: Optional[str],
    created_at: str,
    **content: Any,
) -> Dict[str, Any]:
    return {
        "id": doc_id,
        "documentType": document_type,
        "clientId": client_id,
        "date": date,
        "status": status,
        "content": content,
        "createdAt": created_at,
        "updatedAt": created_at,
    }


DOCUMENTS: Dict[str, List[Dict[str, Any]]] = {
    "client-001": [
        _doc(
            "doc-consultation-2024-11-10-001",
            "consultation",
            "client-001",
            "complete",
            "2024-11-10",
            "2024-11-10T10:30:00.000Z",
            duration=30,
            delivery="Phone",
            presentingConcerns="Work-related anxiety, imposter syndrome",
            recommendedServices="Individual therapy, CBT approach",
        ),
        _doc(
            "doc-intake-2024-11-15-001",
            "intake",
            "client-001",
            "complete",
            "2024-11-15",
            "2024-11-15T10:30:00.000Z",
            duration=90,
            delivery="In Person",
            presentingProblems=["anxiety", "burnout"],
            riskAssessment={"riskLevel": "standard", "suicidalIdeation": False, "selfHarm": False},
            treatmentRecommendations="Weekly individual therapy using CBT and mindfulness approaches.",
        ),
        _doc(
            "doc-diagnosis-2024-11-20-001",
            "diagnosis",
            "client-001",
            "active",
            "2024-11-20",
            "2024-11-20T10:00:00.000Z",
            icd10Code="F41.1",
            description="Generalized Anxiety Disorder",
            isPrincipal=True,
            severity="moderate",
            clinicalNotes="Responds well to CBT and mindfulness interventions.",
            dateResolved=None,
        ),
        _doc(
            "doc-diagnosis-2024-11-20-002",
            "diagnosis",
            "client-001",
            "active",
            "2024-11-20",
            "2024-11-20T10:00:00.000Z",
            icd10Code="F32.0",
            description="Major Depressive Disorder, single episode, mild",
            isPrincipal=False,
            severity="mild",
            clinicalNotes="Secondary to anxiety. Monitoring for changes.",
            dateResolved=None,
        ),
        _doc(
            "doc-treatment_plan-2024-11-22-001",
            "treatment_plan",
            "client-001",
            "active",
            "2024-11-22",
            "2024-11-22T10:30:00.000Z",
            reviewDate="2025-02-22",
            presentingProblems=["anxiety", "burnout"],
            linkedIntakeId="doc-intake-2024-11-15-001",
            goals=[
                {"id": "goal-001", "text": "Reduce anxiety symptoms to manageable levels", "targetDate": "2025-02-22"},
                {"id": "goal-002", "text": "Develop effective coping strategies for work stress", "targetDate": "2025-03-22"},
            ],
        ),
        _doc(
            "doc-progress_note-2025-01-03-001",
            "progress_note",
            "client-001",
            "complete",
            "2025-01-03",
            "2025-01-03T15:30:00.000Z",
            duration=50,
            formType="Progress Note",
            delivery="In Person",
            interventions=[],
            notes="Client reported increased anxiety over holiday period.",
            narrative="Session addressed holiday-related stress and family boundary challenges.",
        ),
        _doc(
            "doc-progress_note-2025-01-10-001",
            "progress_note",
            "client-001",
            "complete",
            "2025-01-10",
            "2025-01-10T15:30:00.000Z",
            duration=50,
            formType="Progress Note",
            delivery="In Person",
            therapeuticApproaches=["psychodynamic", "somatic"],
            interventions=[],
            notes="Client discussed continued progress with work-related anxiety.",
            narrative="Client demonstrated significant progress in managing work-related anxiety.",
        ),
    ],
    "client-002": [
        _doc(
            "doc-intake-2024-10-22-001",
            "intake",
            "client-002",
            "complete",
            "2024-10-22",
            "2024-10-22T10:30:00.000Z",
            duration=90,
            delivery="Video",
            presentingProblems=["cptsd", "relational-conflict"],
            riskAssessment={"riskLevel": "elevated", "suicidalIdeation": False, "selfHarm": False},
        ),
        _doc(
            "doc-diagnosis-2024-10-29-001",
            "diagnosis",
            "client-002",
            "provisional",
            "2024-10-29",
            "2024-10-29T10:00:00.000Z",
            icd10Code="F43.10",
            description="Post-traumatic stress disorder, unspecified",
            isPrincipal=True,
            severity="moderate",
            clinicalNotes="Complex trauma history.",
            dateResolved=None,
        ),
        _doc(
            "doc-progress_note-2025-01-09-001",
            "progress_note",
            "client-002",
            "complete",
            "2025-01-09",
            "2025-01-09T17:00:00.000Z",
            duration=50,
            formType="Progress Note",
            delivery="Video",
            interventions=[],
            notes="Worked on pacing of trauma processing.",
            narrative="Session focused on stabilization and resourcing.",
        ),
    ],
}

DEFAULT_SETTINGS: Dict[str, Dict[str, Any]] = {
    "dashboard": {
        "visibleColumns": ["name", "type", "diagnosis", "lastSession", "status"],
        "newClientDefaults": {"paymentType": "private-pay", "sessionBasis": "", "riskLevel": ""},
    },
    "interventions": {
        "favorites": [],
        "hidden": [],
        "customInterventions": [],
        "hiddenApproaches": [],
        "customApproaches": [],
        "usageMode": "global",
        "maxFrequentInterventions": 10,
    },
}

LEXICON: Dict[str, Any] = {
    "version": 1,
    "updatedAt": "2025-12-16T00:00:00.000Z",
    "updatedBy": USER["email"],
    "interventionLexicon": {
        "TH": [
            {"string": "rapport", "frames": ["[V _]"], "approaches": []},
            {"string": "present moment", "frames": ["[V _]", "[V P _]"], "approaches": []},
            {"string": "psychoeducation", "frames": ["[V _]", "[V _ *]"], "approaches": []},
            {"string": "somatic tracking exercise", "frames": ["[V _]"], "approaches": ["somatic-therapy"]},
        ],
        "V": ["built", "anchored", "encouraged", "provided", "facilitated"],
        "P": ["to"],
        "categoryMeta": {"V": {"label": "Action"}, "P": {"label": "Preposition"}},
    },
    "therapeuticApproaches": [
        {"value": "attachment-based-therapy", "name": "Attachment"},
        {"value": "coherence-therapy", "name": "Coherence"},
        {"value": "psychodynamic-therapy", "name": "Psychodynamic"},
        {"value": "somatic-therapy", "name": "Somatic"},
    ],
}

INTERVENTION_USAGE: Dict[str, Dict[str, int]] = {
    "rapport": {"total": 47, "client-001": 8, "client-002": 12, "client-003": 9},
    "validation-emotions": {"total": 42, "client-001": 10, "client-002": 8, "client-003": 7},
    "present-moment": {"total": 38, "client-001": 7, "client-002": 9, "client-003": 8},
    "psychoeducation": {"total": 35, "client-001": 6, "client-002": 7, "client-003": 5},
    "breathing": {"total": 28, "client-001": 6, "client-002": 5, "client-003": 8},
    "grounding": {"total": 20, "client-001": 3, "client-003": 6},
    "body-scan": {"total": 8, "client-003": 3},
}


def seed_state() -> Dict[str, Any]:
    """Fresh, independently mutable copies of every fixture."""

    return {
        "user": copy.deepcopy(USER),
        "clients": copy.deepcopy(CLIENTS),
        "documents": copy.deepcopy(DOCUMENTS),
        "settings": {},
        "lexicon": copy.deepcopy(LEXICON),
        "usage": copy.deepcopy(INTERVENTION_USAGE),
    }


# ---------------------------------------------------------------------------
# Narrative placeholder
# ---------------------------------------------------------------------------

_OPENINGS = (
    "Client presented for their scheduled therapy session, appearing on time and appropriately dressed.",
    "Client arrived punctually for today's individual therapy session.",
    "This session focused on continuing therapeutic work with the client in their ongoing treatment.",
)

_MSE = (
    "Mental status examination revealed the client to be alert and oriented to person, place, and time. "
    "Affect was appropriate to content discussed. Thought processes appeared linear and goal-directed.",
    "On mental status examination, the client presented with euthymic mood and congruent affect. "
    "Cognitive functioning appeared intact, with no evidence of perceptual disturbances.",
    "The client demonstrated appropriate affect throughout the session. Thought content was relevant to "
    "presenting concerns, with no evidence of suicidal or homicidal ideation.",
)

_CLOSINGS = (
    "The client tolerated the session well and demonstrated good engagement throughout. "
    "Next session scheduled as planned.",
    "Overall, this was a productive session with the client showing continued progress toward treatment goals.",
    "Client was receptive to interventions and demonstrated commitment to the therapeutic process. "
    "Follow-up appointment confirmed.",
)

# (keywords, intervention sentence, reasoning sentence)
_THEMES = (
    (
        ("cbt", "cognitive"),
        "Cognitive-behavioral techniques were employed to help the client identify and challenge "
        "maladaptive thought patterns.",
        "CBT approaches were used, so I'll highlight cognitive restructuring and behavioral techniques.",
    ),
    (
        ("anxiety", "anxious"),
        "Relaxation techniques and grounding exercises were practiced to address anxiety symptoms.",
        "The session data mentions anxiety, so I'll incorporate anxiety-specific interventions.",
    ),
    (
        ("depression", "depressed"),
        "Behavioral activation strategies were discussed to increase engagement in pleasurable activities.",
        "Depression is indicated, so I'll reference mood-related content and behavioral activation.",
    ),
    (
        ("trauma", "ptsd"),
        "Trauma-informed interventions were utilized, with careful attention to pacing and client safety.",
        "Given the trauma-related content, I'll use careful clinical language and note safety considerations.",
    ),
    (
        ("grief", "loss"),
        "Grief processing continued with exploration of the meaning of the loss. "
        "Normalization of grief responses was provided.",
        None,
    ),
    (
        ("somatic", "body"),
        "Somatic awareness exercises were facilitated to help the client connect with bodily sensations.",
        "Somatic work was done, so I'll include references to body awareness.",
    ),
    (
        ("psychodynamic",),
        "Psychodynamic exploration revealed patterns connecting early experiences to current relational dynamics.",
        None,
    ),
)

_DEFAULT_INTERVENTION = (
    "Therapeutic interventions focused on building insight and developing adaptive coping strategies."
)


def mock_narrative(prompt: str) -> str:
    """Return a deterministic progress-note narrative tailored to *prompt*.

    The output mirrors the real model's format: a ``<thinking>`` block followed
    by a ``<narrative>`` block.
    """

    lowered = prompt.lower()
    pick = zlib.crc32(prompt.encode("utf-8"))

    interventions: List[str] = []
    thinking = [
        "I'll structure this progress note with a clear opening, MSE observations, "
        "intervention details, and a closing summary."
    ]
    for keywords, sentence, reasoning in _THEMES:
        if any(word in lowered for word in keywords):
            interventions.append(sentence)
            if reasoning:
                thinking.append(reasoning)
    if not interventions:
        interventions.append(_DEFAULT_INTERVENTION)
    thinking.append("I'll maintain a professional yet warm tone, using third person past tense.")

    narrative = "\n\n".join(
        [
            _OPENINGS[pick % len(_OPENINGS)],
            _MSE[(pick // 3) % len(_MSE)],
            " ".join(interventions),
            _CLOSINGS[(pick // 9) % len(_CLOSINGS)],
        ]
    )
    reasoning_text = "\n\n".join(thinking)
    return f"<thinking>\n{reasoning_text}\n</thinking>\n\n<narrative>\n{narrative}\n</narrative>"


__all__ = [
    "DEFAULT_SETTINGS",
    "MFA_ISSUER",
    "MOCK_MFA_SECRET",
    "MOCK_SESSION",
    "mock_narrative",
    "seed_state",
]

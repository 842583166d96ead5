"""Default deletion plans for the marketplace's subject types.

Plans cover every table holding rows that identify the subject:

- Renter: profile, matches, interests, conversations, viewings, issues,
  invites it accepted, notifications, ratings
- Landlord: profile, properties and everything attached to them
- Agency: profile, invitations, links, issues; property and match rows
  owned by landlords are unlinked, not deleted
- Admin: profile and notifications

Ratings are never deleted because they feed other subjects' aggregate
scores; the column naming the erased party and the review text are
overwritten instead, and the other party's id is kept.

These plans are loaded by DeletionPlanRegistry.with_default_plans().
"""

from letright.erasure.anonymizer import (
    DELETED_REVIEW_CONTENT,
    AnonymizationMethod,
    AnonymizationRule,
)
from letright.erasure.plan import PROFILE_COLLECTIONS, DeletionPlan, PlanEntry
from letright.erasure.types import PurgePolicy, SubjectType

_REVIEW_RULE = AnonymizationRule(
    "review", AnonymizationMethod.PLACEHOLDER, custom_value=DELETED_REVIEW_CONTENT
)

# Each entry scrubs only the party column it matched on.
RATING_AUTHOR_ANONYMIZATION = (
    AnonymizationRule("from_user_id", AnonymizationMethod.REDACTION),
    _REVIEW_RULE,
)
RATING_RECIPIENT_ANONYMIZATION = (
    AnonymizationRule("to_user_id", AnonymizationMethod.REDACTION),
    _REVIEW_RULE,
)


def get_default_plans() -> list[DeletionPlan]:
    """Get the deletion plan of every subject type."""
    return [
        _renter_plan(),
        _landlord_plan(),
        _agency_plan(),
        _admin_plan(),
    ]


def _rating_entries() -> list[PlanEntry]:
    return [
        PlanEntry(
            "ratings",
            "from_user_id",
            PurgePolicy.ANONYMIZE,
            anonymize=RATING_AUTHOR_ANONYMIZATION,
        ),
        PlanEntry(
            "ratings",
            "to_user_id",
            PurgePolicy.ANONYMIZE,
            anonymize=RATING_RECIPIENT_ANONYMIZATION,
        ),
    ]


def _renter_plan() -> DeletionPlan:
    profile = PROFILE_COLLECTIONS[SubjectType.RENTER]
    return DeletionPlan(
        subject_type=SubjectType.RENTER,
        entries=(
            # Messages live inside conversation rows.
            PlanEntry("conversations", "renter_id", references=("matches", profile)),
            PlanEntry("viewing_requests", "renter_id", references=("matches", profile)),
            *_rating_entries(),
            PlanEntry("email_notifications", "recipient_id", references=(profile,)),
            PlanEntry("matches", "renter_id", references=("properties", profile)),
            PlanEntry("interests", "renter_id", references=("properties", profile)),
            PlanEntry("issues", "renter_id", references=("properties", profile)),
            PlanEntry("renter_invites", "accepted_by_renter_id", references=(profile,)),
            PlanEntry(profile, "id"),
        ),
    )


def _landlord_plan() -> DeletionPlan:
    profile = PROFILE_COLLECTIONS[SubjectType.LANDLORD]
    return DeletionPlan(
        subject_type=SubjectType.LANDLORD,
        entries=(
            PlanEntry("conversations", "landlord_id", references=("matches", "properties")),
            PlanEntry("viewing_requests", "landlord_id", references=("matches", "properties")),
            *_rating_entries(),
            PlanEntry("agency_link_invitations", "landlord_id", references=(profile,)),
            PlanEntry("email_notifications", "recipient_id", references=(profile,)),
            PlanEntry("matches", "landlord_id", references=("properties", profile)),
            PlanEntry("interests", "landlord_id", references=("properties",)),
            PlanEntry("agency_property_links", "landlord_id", references=("properties", profile)),
            PlanEntry("properties", "landlord_id", references=(profile,)),
            PlanEntry(profile, "id"),
        ),
    )


def _agency_plan() -> DeletionPlan:
    profile = PROFILE_COLLECTIONS[SubjectType.AGENCY]
    unlink = (AnonymizationRule("agency_id", AnonymizationMethod.NULLIFY),)
    return DeletionPlan(
        subject_type=SubjectType.AGENCY,
        entries=(
            *_rating_entries(),
            PlanEntry("email_notifications", "recipient_id", references=(profile,)),
            PlanEntry("agency_link_invitations", "agency_id", references=(profile,)),
            PlanEntry("agency_property_links", "agency_id", references=(profile,)),
            PlanEntry("issues", "agency_id", references=(profile,)),
            PlanEntry(
                "properties", "agency_id", PurgePolicy.ANONYMIZE,
                references=(profile,), anonymize=unlink,
            ),
            PlanEntry(
                "matches", "agency_id", PurgePolicy.ANONYMIZE,
                references=(profile,), anonymize=unlink,
            ),
            PlanEntry(profile, "id"),
        ),
    )


def _admin_plan() -> DeletionPlan:
    profile = PROFILE_COLLECTIONS[SubjectType.ADMIN]
    return DeletionPlan(
        subject_type=SubjectType.ADMIN,
        entries=(
            PlanEntry("email_notifications", "recipient_id", references=(profile,)),
            PlanEntry(profile, "id"),
        ),
    )

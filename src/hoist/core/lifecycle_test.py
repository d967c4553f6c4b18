import json
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from testfixtures import ShouldRaise, compare

from hoist.core.errors import PolicyRejected
from hoist.core.lifecycle import (
    CountType,
    LifecyclePolicy,
    LifecycleStore,
    PolicyManager,
    PolicyState,
    Rule,
    Selection,
    StoredImage,
    TagStatus,
    evaluate_policy,
    parse_policy,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)

KEEP_THREE = {
    "rules": [
        {
            "rulePriority": 1,
            "description": "keep the last 3 images",
            "selection": {
                "tagStatus": "tagged",
                "countType": "imageCountMoreThan",
                "countNumber": 3,
            },
            "action": {"type": "expire"},
        }
    ]
}


def _rule(priority, tag_status, count_number, count_type=CountType.IMAGE_COUNT_MORE_THAN, **kwargs):
    return Rule(
        priority=priority,
        selection=Selection(
            tag_status=tag_status,
            count_type=count_type,
            count_number=count_number,
            **kwargs,
        ),
    )


def _image(idx, *tags, age_days=None):
    pushed_at = NOW - timedelta(days=age_days if age_days is not None else 100 - idx)
    return StoredImage(digest=f"sha256:{idx}", pushed_at=pushed_at, tags=tags)


class InMemoryStore(LifecycleStore):
    def __init__(self, images: Optional[List[StoredImage]] = None):
        self.policies: Dict[str, str] = {}
        self.images = images or []
        self.puts = 0

    def get_policy(self, repository: str) -> Optional[str]:
        return self.policies.get(repository)

    def put_policy(self, repository: str, text: str):
        self.puts += 1
        self.policies[repository] = text

    def list_images(self, repository: str) -> List[StoredImage]:
        return list(self.images)


def test_parse_policy__parse_document():
    res = parse_policy(json.dumps(KEEP_THREE))

    compare(
        res,
        LifecyclePolicy(
            rules=[
                Rule(
                    priority=1,
                    description="keep the last 3 images",
                    selection=Selection(
                        tag_status=TagStatus.TAGGED,
                        count_type=CountType.IMAGE_COUNT_MORE_THAN,
                        count_number=3,
                    ),
                )
            ]
        ),
    )


def test_parse_policy__sort_rules_by_priority():
    document = {
        "rules": [
            {
                "rulePriority": 10,
                "selection": {
                    "tagStatus": "any",
                    "countType": "sinceImagePushed",
                    "countUnit": "days",
                    "countNumber": 30,
                },
                "action": {"type": "expire"},
            },
            {
                "rulePriority": 2,
                "selection": {
                    "tagStatus": "untagged",
                    "countType": "sinceImagePushed",
                    "countUnit": "days",
                    "countNumber": 1,
                },
                "action": {"type": "expire"},
            },
        ]
    }

    res = parse_policy(document)

    compare([rule.priority for rule in res.rules], [2, 10])


def test_parse_policy__inverse_of_to_document():
    policy = LifecyclePolicy(
        rules=[
            _rule(1, TagStatus.TAGGED, 5, tag_prefixes=["v", "release-"]),
            _rule(2, TagStatus.UNTAGGED, 7, CountType.SINCE_IMAGE_PUSHED, count_unit="days"),
        ]
    )

    compare(parse_policy(policy.to_json()), policy)


def test_parse_policy__keep_tag_patterns_in_document():
    selection = {
        "tagStatus": "tagged",
        "tagPatternList": ["prod*", "*-release"],
        "countType": "imageCountMoreThan",
        "countNumber": 1,
    }
    document = {
        "rules": [{"rulePriority": 1, "selection": selection, "action": {"type": "expire"}}]
    }

    res = parse_policy(document)

    compare(res.rules[0].selection.tag_patterns, ("prod*", "*-release"))
    compare(res.to_document(), document)


@pytest.mark.parametrize(
    ["selection", "action"],
    [
        (
            {
                "tagStatus": "tagged",
                "tagPrefixLst": ["prod"],
                "countType": "imageCountMoreThan",
                "countNumber": 1,
            },
            {"type": "expire"},
        ),
        (
            {"tagStatus": "tagged", "countType": "imageCountMoreThan", "countNumber": 1},
            {"type": "expire", "keep": True},
        ),
        (
            {
                "tagStatus": "tagged",
                "tagPrefixList": ["prod"],
                "tagPatternList": ["prod*"],
                "countType": "imageCountMoreThan",
                "countNumber": 1,
            },
            {"type": "expire"},
        ),
        (
            {
                "tagStatus": "untagged",
                "tagPatternList": ["prod*"],
                "countType": "imageCountMoreThan",
                "countNumber": 1,
            },
            {"type": "expire"},
        ),
    ],
)
def test_parse_policy__raises_PolicyRejected_for_unsupported_selection_or_action(
    selection, action
):
    document = {"rules": [{"rulePriority": 4, "selection": selection, "action": action}]}

    with ShouldRaise(PolicyRejected) as raised:
        parse_policy(document)

    compare(raised.raised.priority, 4)


def test_parse_policy__raises_PolicyRejected_naming_unknown_selection_key():
    selection = {
        "tagStatus": "tagged",
        "tagPrefixLst": ["prod"],
        "countType": "imageCountMoreThan",
        "countNumber": 1,
    }
    document = {
        "rules": [{"rulePriority": 1, "selection": selection, "action": {"type": "expire"}}]
    }

    with ShouldRaise(PolicyRejected) as raised:
        parse_policy(document)

    compare(str(raised.raised), "rule 1: unknown selection keys ['tagPrefixLst']")


def test_parse_policy__raises_PolicyRejected_for_invalid_json():
    with ShouldRaise(PolicyRejected):
        parse_policy("{not json")


@pytest.mark.parametrize(
    ["selection", "expected_priority"],
    [
        ({"tagStatus": "sometimes", "countType": "imageCountMoreThan", "countNumber": 1}, 3),
        ({"tagStatus": "tagged", "countType": "imageCountMoreThan", "countNumber": 0}, 3),
        ({"tagStatus": "tagged", "countType": "imageCountMoreThan", "countNumber": "3"}, 3),
        ({"tagStatus": "tagged", "countType": "sinceImagePushed", "countNumber": 3}, 3),
        (
            {
                "tagStatus": "untagged",
                "tagPrefixList": ["v"],
                "countType": "imageCountMoreThan",
                "countNumber": 1,
            },
            3,
        ),
        (
            {
                "tagStatus": "tagged",
                "countType": "imageCountMoreThan",
                "countUnit": "days",
                "countNumber": 1,
            },
            3,
        ),
    ],
)
def test_parse_policy__raises_PolicyRejected_with_offending_priority(selection, expected_priority):
    document = {
        "rules": [
            {"rulePriority": 3, "selection": selection, "action": {"type": "expire"}},
        ]
    }

    with ShouldRaise(PolicyRejected) as raised:
        parse_policy(document)

    compare(raised.raised.priority, expected_priority)


def test_parse_policy__raises_PolicyRejected_for_duplicated_priority():
    document = {"rules": KEEP_THREE["rules"] * 2}

    with ShouldRaise(PolicyRejected) as raised:
        parse_policy(document)

    compare(raised.raised.priority, 1)
    compare(str(raised.raised), "rule 1: duplicated rulePriority")


def test_parse_policy__raises_PolicyRejected_when_any_is_not_last():
    document = {
        "rules": [
            {
                "rulePriority": 1,
                "selection": {
                    "tagStatus": "any",
                    "countType": "imageCountMoreThan",
                    "countNumber": 10,
                },
                "action": {"type": "expire"},
            },
            KEEP_THREE["rules"][0] | {"rulePriority": 2},
        ]
    }

    with ShouldRaise(PolicyRejected) as raised:
        parse_policy(document)

    compare(raised.raised.priority, 1)


def test_parse_policy__raises_PolicyRejected_for_unsupported_action():
    document = {"rules": [KEEP_THREE["rules"][0] | {"action": {"type": "delete"}}]}

    with ShouldRaise(PolicyRejected):
        parse_policy(document)


def test_parse_policy__raises_PolicyRejected_for_empty_rules():
    with ShouldRaise(PolicyRejected(message="policy must contain at least one rule")):
        parse_policy({"rules": []})


def test_evaluate_policy__expire_oldest_tagged_images_above_count():
    images = [_image(idx, f"v{idx}") for idx in range(5)]
    policy = parse_policy(KEEP_THREE)

    res = evaluate_policy(policy, images, now=NOW)

    compare(res, [images[0], images[1]])


def test_evaluate_policy__ignore_untagged_images_for_tagged_rule():
    images = [_image(0), _image(1, "v1"), _image(2), _image(3, "v3")]
    policy = LifecyclePolicy(rules=[_rule(1, TagStatus.TAGGED, 1)])

    res = evaluate_policy(policy, images, now=NOW)

    compare(res, [images[1]])


def test_evaluate_policy__filter_by_tag_prefix():
    images = [_image(0, "v0"), _image(1, "dev-1"), _image(2, "v2"), _image(3, "dev-3")]
    policy = LifecyclePolicy(rules=[_rule(1, TagStatus.TAGGED, 1, tag_prefixes=["dev-"])])

    res = evaluate_policy(policy, images, now=NOW)

    compare(res, [images[1]])


def test_evaluate_policy__filter_by_tag_pattern():
    images = [
        _image(0, "prod-1"),
        _image(1, "dev-1"),
        _image(2, "prod-2"),
        _image(3, "prod-3-rc"),
        _image(4, "prod-4"),
    ]
    policy = LifecyclePolicy(rules=[_rule(1, TagStatus.TAGGED, 1, tag_patterns=["prod-*"])])

    res = evaluate_policy(policy, images, now=NOW)

    compare(res, [images[0], images[2], images[3]])


def test_evaluate_policy__tag_pattern_matches_whole_tag():
    images = [_image(0, "v1.0-rc"), _image(1, "v1.0"), _image(2, "v2.0-rc"), _image(3, "v2.0")]
    policy = LifecyclePolicy(rules=[_rule(1, TagStatus.TAGGED, 1, tag_patterns=["v*-rc"])])

    res = evaluate_policy(policy, images, now=NOW)

    compare(res, [images[0]])


def test_evaluate_policy__expire_images_older_than_days():
    images = [_image(0, age_days=40), _image(1, age_days=10), _image(2, age_days=31)]
    policy = LifecyclePolicy(
        rules=[
            _rule(1, TagStatus.UNTAGGED, 30, CountType.SINCE_IMAGE_PUSHED, count_unit="days"),
        ]
    )

    res = evaluate_policy(policy, images, now=NOW)

    compare(res, [images[0], images[2]])


def test_evaluate_policy__image_claimed_by_earlier_rule_is_not_expired_later():
    images = [_image(idx, f"v{idx}") for idx in range(4)] + [_image(4, "dev")]
    policy = LifecyclePolicy(
        rules=[
            _rule(1, TagStatus.TAGGED, 10, tag_prefixes=["v"]),
            _rule(2, TagStatus.ANY, 1),
        ]
    )

    res = evaluate_policy(policy, images, now=NOW)

    compare(res, [])


def test_PolicyManager__state_moves_from_absent_to_applied():
    manager = PolicyManager(InMemoryStore())

    compare(manager.state("myapp"), PolicyState.ABSENT)

    res = manager.apply("myapp", parse_policy(KEEP_THREE))

    compare(res.changed, True)
    compare(res.previous_state, PolicyState.ABSENT)
    compare(manager.state("myapp"), PolicyState.APPLIED)


def test_PolicyManager_apply__is_idempotent():
    store = InMemoryStore()
    manager = PolicyManager(store)
    policy = parse_policy(KEEP_THREE)

    manager.apply("myapp", policy)
    first = manager.verify("myapp")

    res = manager.apply("myapp", policy)

    compare(res.changed, False)
    compare(res.previous_state, PolicyState.APPLIED)
    compare(store.puts, 1)
    compare(manager.verify("myapp"), first)


def test_PolicyManager_apply__replace_previous_policy_without_merging():
    store = InMemoryStore()
    manager = PolicyManager(store)
    manager.apply("myapp", parse_policy(KEEP_THREE))

    replacement = LifecyclePolicy(
        rules=[_rule(5, TagStatus.UNTAGGED, 1, CountType.SINCE_IMAGE_PUSHED, count_unit="days")]
    )
    res = manager.apply("myapp", replacement)

    compare(res.previous, parse_policy(KEEP_THREE))
    compare(res.previous_state, PolicyState.SUPERSEDED)
    compare(manager.verify("myapp"), replacement)


def test_PolicyManager_evaluate__list_two_oldest_of_five_tagged_images():
    images = [_image(idx, f"build-{idx}") for idx in range(5)]
    manager = PolicyManager(InMemoryStore(images))
    manager.apply("myapp", parse_policy(KEEP_THREE))

    res = manager.evaluate("myapp", now=NOW)

    compare([image.digest for image in res], ["sha256:0", "sha256:1"])


def test_PolicyManager_evaluate__returns_nothing_without_policy():
    manager = PolicyManager(InMemoryStore([_image(0, "v0")]))

    compare(manager.evaluate("myapp", now=NOW), [])

"""Lifecycle policies telling a registry which stored images to expire.

The policy document uses the same JSON format as AWS ECR:

    {
        "rules": [
            {
                "rulePriority": 1,
                "description": "keep the last 3 releases",
                "selection": {
                    "tagStatus": "tagged",
                    "tagPrefixList": ["v"],
                    "countType": "imageCountMoreThan",
                    "countNumber": 3
                },
                "action": {"type": "expire"}
            }
        ]
    }

Rules are evaluated by ascending priority. An image selected by the tag
status of a rule cannot be expired by any rule evaluated after it.
"""
import abc
import enum
import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from attrs import define, field

from hoist.core.errors import PolicyRejected
from hoist.utils import log


@enum.unique
class TagStatus(enum.Enum):
    """Which images a rule selects.

    Attributes:

    * `TAGGED`: images with at least one tag (optionally matching a prefix).
    * `UNTAGGED`: images without tags.
    * `ANY`: all images.
    """

    TAGGED = "tagged"
    UNTAGGED = "untagged"
    ANY = "any"


@enum.unique
class CountType(enum.Enum):
    """How the count threshold of a rule is interpreted.

    Attributes:

    * `IMAGE_COUNT_MORE_THAN`: keep the newest `count_number` images.
    * `SINCE_IMAGE_PUSHED`: expire images older than `count_number` days.
    """

    IMAGE_COUNT_MORE_THAN = "imageCountMoreThan"
    SINCE_IMAGE_PUSHED = "sinceImagePushed"


@enum.unique
class PolicyState(enum.Enum):
    """State of a policy in a repository.

    Attributes:

    * `ABSENT`: no policy has been applied.
    * `APPLIED`: the policy is the active one.
    * `SUPERSEDED`: the policy was replaced by a later apply.
    """

    ABSENT = "ABSENT"
    APPLIED = "APPLIED"
    SUPERSEDED = "SUPERSEDED"


@define(frozen=True, kw_only=True)
class Selection:
    """The images selected by a rule.

    Arguments:
        tag_status: the tag status of the selected images.
        count_type: how `count_number` is interpreted.
        count_number: the count threshold.
        tag_prefixes: tag prefixes, only allowed for tagged images.
        tag_patterns: tag patterns where `*` matches any sequence of
            characters, only allowed for tagged images.
        count_unit: unit of `count_number`, only `days` for `sinceImagePushed`.
    """

    tag_status: TagStatus
    count_type: CountType
    count_number: int
    tag_prefixes: Tuple[str, ...] = field(default=(), converter=tuple)
    tag_patterns: Tuple[str, ...] = field(default=(), converter=tuple)
    count_unit: Optional[str] = None


@define(frozen=True, kw_only=True)
class Rule:
    """A rule of a lifecycle policy. The only supported action is `expire`.

    Arguments:
        priority: evaluation order, unique within a policy.
        selection: the images the rule applies to.
        description: free text describing the rule.
    """

    priority: int
    selection: Selection
    description: str = ""
    action: str = "expire"


@define(frozen=True, kw_only=True)
class LifecyclePolicy:
    """An ordered set of rules.

    Arguments:
        rules: the policy rules sorted by priority.
    """

    rules: Tuple[Rule, ...] = field(
        converter=lambda rules: tuple(sorted(rules, key=lambda rule: rule.priority))
    )

    def to_document(self) -> Dict[str, Any]:
        """Serialises the policy into its JSON document."""
        rules = []

        for rule in self.rules:
            selection: Dict[str, Any] = {"tagStatus": rule.selection.tag_status.value}

            if rule.selection.tag_prefixes:
                selection["tagPrefixList"] = list(rule.selection.tag_prefixes)

            if rule.selection.tag_patterns:
                selection["tagPatternList"] = list(rule.selection.tag_patterns)

            selection["countType"] = rule.selection.count_type.value

            if rule.selection.count_unit is not None:
                selection["countUnit"] = rule.selection.count_unit

            selection["countNumber"] = rule.selection.count_number

            encoded: Dict[str, Any] = {"rulePriority": rule.priority}
            if rule.description:
                encoded["description"] = rule.description

            encoded["selection"] = selection
            encoded["action"] = {"type": rule.action}

            rules.append(encoded)

        return {"rules": rules}

    def to_json(self) -> str:
        """Serialises the policy into JSON text."""
        return json.dumps(self.to_document(), indent=4)


def _require(condition: bool, message: str, priority: Optional[int] = None):
    if not condition:
        raise PolicyRejected(message, priority=priority)


def _parse_enum(enum_type, value, name: str, priority: int):
    try:
        return enum_type(value)

    except ValueError as exc:
        raise PolicyRejected(f"invalid {name} {value!r}", priority=priority) from exc


_RULE_KEYS = {"rulePriority", "description", "selection", "action"}
_SELECTION_KEYS = {
    "tagStatus",
    "tagPrefixList",
    "tagPatternList",
    "countType",
    "countUnit",
    "countNumber",
}
_ACTION_KEYS = {"type"}


def _require_known_keys(data: Dict[str, Any], known: Set[str], name: str, priority: Optional[int]):
    unknown = set(data) - known
    _require(not unknown, f"unknown {name} keys {sorted(unknown)}", priority)


def _parse_tag_filter(selection: Dict[str, Any], key: str, priority: int) -> List[str]:
    values = selection.get(key, [])
    _require(
        isinstance(values, list) and all(isinstance(value, str) and value for value in values),
        f"{key} must be a list of non-empty strings",
        priority,
    )

    return values


def _parse_rule(data: Any) -> Rule:
    _require(isinstance(data, dict), "rule must be an object")

    priority = data.get("rulePriority")
    _require(
        isinstance(priority, int) and not isinstance(priority, bool) and priority >= 1,
        f"invalid rulePriority {priority!r}",
    )

    _require_known_keys(data, _RULE_KEYS, "rule", priority)

    description = data.get("description", "")
    _require(isinstance(description, str), "description must be a string", priority)

    action = data.get("action")
    _require(isinstance(action, dict), "action must be an object", priority)
    _require_known_keys(action, _ACTION_KEYS, "action", priority)
    _require(action.get("type") == "expire", "action type must be expire", priority)

    selection = data.get("selection")
    _require(isinstance(selection, dict), "selection must be an object", priority)
    _require_known_keys(selection, _SELECTION_KEYS, "selection", priority)

    tag_status = _parse_enum(TagStatus, selection.get("tagStatus"), "tagStatus", priority)
    count_type = _parse_enum(CountType, selection.get("countType"), "countType", priority)

    count_number = selection.get("countNumber")
    _require(
        isinstance(count_number, int) and not isinstance(count_number, bool) and count_number >= 1,
        f"invalid countNumber {count_number!r}",
        priority,
    )

    tag_prefixes = _parse_tag_filter(selection, "tagPrefixList", priority)
    tag_patterns = _parse_tag_filter(selection, "tagPatternList", priority)
    _require(
        not (tag_prefixes or tag_patterns) or tag_status is TagStatus.TAGGED,
        "tagPrefixList and tagPatternList are only allowed for tagged images",
        priority,
    )
    _require(
        not (tag_prefixes and tag_patterns),
        "tagPrefixList and tagPatternList cannot be used together",
        priority,
    )

    count_unit = selection.get("countUnit")
    if count_type is CountType.SINCE_IMAGE_PUSHED:
        _require(count_unit == "days", "countUnit must be days for sinceImagePushed", priority)

    else:
        _require(count_unit is None, "countUnit is only allowed for sinceImagePushed", priority)

    return Rule(
        priority=priority,
        description=description,
        selection=Selection(
            tag_status=tag_status,
            count_type=count_type,
            count_number=count_number,
            tag_prefixes=tag_prefixes,
            tag_patterns=tag_patterns,
            count_unit=count_unit,
        ),
    )


def parse_policy(document: Any) -> LifecyclePolicy:
    """Parses and validates a lifecycle policy document.

    Arguments:
        document: the policy either as JSON text or already decoded.

    Returns:
        The validated policy.

    Raises:
        PolicyRejected: if the document is malformed. The offending rule
            priority is attached when known.
    """
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)

        except ValueError as exc:
            raise PolicyRejected("policy is not valid JSON", cause=exc) from exc

    _require(isinstance(document, dict), "policy must be an object")
    _require(set(document) == {"rules"}, "policy must contain only rules")
    _require(isinstance(document["rules"], list), "rules must be a list")
    _require(len(document["rules"]) > 0, "policy must contain at least one rule")

    rules = [_parse_rule(data) for data in document["rules"]]

    seen: Set[int] = set()
    for rule in rules:
        _require(rule.priority not in seen, "duplicated rulePriority", rule.priority)
        seen.add(rule.priority)

    max_priority = max(seen)
    for rule in rules:
        _require(
            rule.selection.tag_status is not TagStatus.ANY or rule.priority == max_priority,
            "rule with tagStatus any must have the highest rulePriority",
            rule.priority,
        )

    return LifecyclePolicy(rules=rules)


@define(frozen=True, kw_only=True)
class StoredImage:
    """An image stored in a remote repository.

    Arguments:
        digest: the image manifest digest.
        pushed_at: when the image was pushed.
        tags: tags pointing to the image.
    """

    digest: str
    pushed_at: datetime
    tags: Tuple[str, ...] = field(default=(), converter=tuple)


def _pattern_matches(pattern: str, tag: str) -> bool:
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.fullmatch(regex, tag) is not None


def _matches(selection: Selection, image: StoredImage) -> bool:
    if selection.tag_status is TagStatus.ANY:
        return True

    if selection.tag_status is TagStatus.UNTAGGED:
        return not image.tags

    if not image.tags:
        return False

    if selection.tag_prefixes:
        return any(
            tag.startswith(prefix) for tag in image.tags for prefix in selection.tag_prefixes
        )

    if selection.tag_patterns:
        return any(
            _pattern_matches(pattern, tag)
            for tag in image.tags
            for pattern in selection.tag_patterns
        )

    return True


def evaluate_policy(
    policy: LifecyclePolicy,
    images: List[StoredImage],
    now: Optional[datetime] = None,
) -> List[StoredImage]:
    """Lists the images a policy would expire without deleting them.

    Arguments:
        policy: the policy to evaluate.
        images: all the images stored in the repository.
        now: the time of the evaluation. Defaults to the current UTC time.

    Returns:
        The images to expire sorted from the oldest to the newest.
    """
    now = now or datetime.now(timezone.utc)

    claimed: Set[str] = set()
    expired: Dict[str, StoredImage] = {}

    for rule in policy.rules:
        selection = rule.selection
        selected = [
            image
            for image in images
            if image.digest not in claimed and _matches(selection, image)
        ]
        claimed.update(image.digest for image in selected)

        newest_first = sorted(selected, key=lambda image: image.pushed_at, reverse=True)

        if selection.count_type is CountType.IMAGE_COUNT_MORE_THAN:
            candidates = newest_first[selection.count_number :]

        else:
            threshold = now - timedelta(days=selection.count_number)
            candidates = [image for image in newest_first if image.pushed_at < threshold]

        for image in candidates:
            expired[image.digest] = image

    return sorted(expired.values(), key=lambda image: image.pushed_at)


class LifecycleStore(abc.ABC):
    """Access to the lifecycle policies and images held by a registry."""

    @abc.abstractmethod
    def get_policy(self, repository: str) -> Optional[str]:
        """Returns the active policy text. None if the repository has no policy."""
        raise NotImplementedError

    @abc.abstractmethod
    def put_policy(self, repository: str, text: str):
        """Replaces the active policy as a whole."""
        raise NotImplementedError

    @abc.abstractmethod
    def list_images(self, repository: str) -> List[StoredImage]:
        """Returns all the images stored in the repository."""
        raise NotImplementedError


@define(frozen=True, kw_only=True)
class ApplyResult:
    """Outcome of applying a policy.

    Arguments:
        policy: the active policy after the apply.
        previous: the policy that was active before, if any.
        changed: True if the policy was uploaded.
    """

    policy: LifecyclePolicy
    previous: Optional[LifecyclePolicy]
    changed: bool

    @property
    def previous_state(self) -> PolicyState:
        """State of the previously active policy after this apply."""
        if self.previous is None:
            return PolicyState.ABSENT

        return PolicyState.SUPERSEDED if self.changed else PolicyState.APPLIED


class PolicyManager:
    """Applies, verifies and evaluates the lifecycle policy of repositories.

    Expiration itself is performed by the registry.

    Arguments:
        store: the registry's lifecycle store.
    """

    def __init__(self, store: LifecycleStore):
        self._store = store

    def verify(self, repository: str) -> Optional[LifecyclePolicy]:
        """Returns the active policy. None if no policy was applied."""
        text = self._store.get_policy(repository)
        if text is None:
            return None

        return parse_policy(text)

    def state(self, repository: str) -> PolicyState:
        """Returns whether the repository has an active policy."""
        return PolicyState.ABSENT if self.verify(repository) is None else PolicyState.APPLIED

    def apply(self, repository: str, policy: LifecyclePolicy) -> ApplyResult:
        """Replaces the active policy with `policy`.

        Nothing is uploaded if `policy` is already the active one.
        """
        previous = self.verify(repository)

        if previous == policy:
            log(f"lifecycle policy already applied repository={repository}")
            return ApplyResult(policy=policy, previous=previous, changed=False)

        self._store.put_policy(repository, policy.to_json())
        log(f"lifecycle policy applied repository={repository}")

        return ApplyResult(policy=policy, previous=previous, changed=True)

    def evaluate(
        self, repository: str, now: Optional[datetime] = None
    ) -> List[StoredImage]:
        """Lists the images the active policy would expire. Nothing is deleted."""
        policy = self.verify(repository)
        if policy is None:
            return []

        return evaluate_policy(policy, self._store.list_images(repository), now=now)

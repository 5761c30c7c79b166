"""
Risk Classifier Unit Tests
"""
import pytest
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from pulito.core.models import ItemCategory, RiskTier
from pulito.core.risk_classifier import RiskCandidate, RiskClassifier


HOME = '/home/tester'


@pytest.fixture
def classifier():
    return RiskClassifier(home=HOME)


def candidate(path, category, dependents=0):
    return RiskCandidate(path=path, category=category, dependents=dependents)


# ============================================================================
# Category base tiers
# ============================================================================

@pytest.mark.parametrize('category,expected', [
    (ItemCategory.CACHE, RiskTier.SAFE),
    (ItemCategory.EMPTY_DIRECTORY, RiskTier.SAFE),
    (ItemCategory.BROKEN_SYMLINK, RiskTier.SAFE),
    (ItemCategory.ORPHANED_TEMP, RiskTier.SAFE),
    (ItemCategory.LOG, RiskTier.LOW),
    (ItemCategory.DUPLICATE, RiskTier.MODERATE),
    (ItemCategory.LARGE_FILE, RiskTier.ELEVATED),
])
def test_base_tier_inside_home(classifier, category, expected):
    """Test base tiers for items in a plain home subdirectory"""
    assert classifier.classify(candidate(f'{HOME}/stuff/item', category)) == expected


def test_category_ordering(classifier):
    """Test cache <= logs <= packages <= large files"""
    tiers = [
        classifier.classify(candidate(f'{HOME}/a', ItemCategory.CACHE)),
        classifier.classify(candidate(f'{HOME}/a', ItemCategory.LOG)),
        classifier.classify(candidate(f'{HOME}/a', ItemCategory.ORPHAN_PACKAGE)),
        classifier.classify(candidate(f'{HOME}/a', ItemCategory.LARGE_FILE)),
    ]
    assert tiers == sorted(tiers)


# ============================================================================
# Location and dependency factors
# ============================================================================

def test_config_area_raises_tier(classifier):
    """Test items under configuration / app-data areas go up one tier"""
    plain = classifier.classify(candidate(f'{HOME}/logs/app.log', ItemCategory.LOG))
    config = classifier.classify(candidate(f'{HOME}/.local/share/app/app.log', ItemCategory.LOG))
    assert config == plain + 1


def test_outside_home_raises_tier(classifier):
    """Test system-adjacent locations raise the tier"""
    assert classifier.classify(candidate('/var/tmp/big.iso', ItemCategory.LARGE_FILE)) == RiskTier.HIGH


def test_cache_location_exempt(classifier):
    """Test caches stay Safe even outside home"""
    assert classifier.classify(candidate('/var/cache/apt/archives', ItemCategory.PACKAGE_CACHE)) == RiskTier.SAFE


def test_dependents_raise_package_tier(classifier):
    """Test reverse dependencies raise the tier, five or more by two"""
    path = f'{HOME}/pkg'
    none = classifier.classify(candidate(path, ItemCategory.ORPHAN_PACKAGE))
    few = classifier.classify(candidate(path, ItemCategory.ORPHAN_PACKAGE, dependents=1))
    many = classifier.classify(candidate(path, ItemCategory.ORPHAN_PACKAGE, dependents=5))
    assert none == RiskTier.MODERATE
    assert few == RiskTier.ELEVATED
    assert many == RiskTier.HIGH


def test_non_denied_tiers_capped_at_high(classifier):
    """Test stacked factors never reach Critical without the deny list"""
    tier = classifier.classify(candidate('/usr/share/doc/libfoo', ItemCategory.LARGE_FILE, dependents=9))
    assert tier == RiskTier.HIGH


# ============================================================================
# Deny list
# ============================================================================

@pytest.mark.parametrize('path', [
    f'{HOME}/.ssh',
    f'{HOME}/.ssh/id_rsa',
    f'{HOME}/.gnupg/pubring.kbx',
    f'{HOME}/backup/passwords.kdbx',
    f'{HOME}/certs/server.pem',
])
def test_deny_list_forces_critical(classifier, path):
    """Test deny-listed paths are Critical and never auto-selected"""
    assessment = classifier.assess(candidate(path, ItemCategory.CACHE))
    assert assessment.tier == RiskTier.CRITICAL
    assert assessment.denied
    assert not assessment.tier.auto_selectable


def test_custom_deny_patterns():
    """Test custom deny patterns with ~ expansion"""
    classifier = RiskClassifier(home=HOME, deny_patterns=('~/keep/*',))
    assert classifier.is_denied(f'{HOME}/keep/photo.jpg')
    assert not classifier.is_denied(f'{HOME}/.ssh/id_rsa')


# ============================================================================
# Determinism
# ============================================================================

def test_classification_is_deterministic(classifier):
    """Test identical input always yields identical output"""
    c = candidate(f'{HOME}/.config/app/cache.db', ItemCategory.DUPLICATE, dependents=2)
    results = {classifier.classify(c) for _ in range(20)}
    assert len(results) == 1


def test_assessment_reasons(classifier):
    """Test assessments explain which factors applied"""
    assessment = classifier.assess(candidate(f'{HOME}/.config/x.log', ItemCategory.LOG))
    assert len(assessment.reasons) == 2
    assert not assessment.denied


def test_describe_every_tier():
    """Test every tier has a description"""
    for tier in RiskTier:
        assert RiskClassifier.describe(tier)

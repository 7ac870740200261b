import pytest

from slamcore.keyframe_database import KeyFrameDatabase


class FakeVocabulary:
    def __init__(self, size):
        self._size = size

    def __len__(self):
        return self._size

    def score(self, a, b):
        return sum(min(a[w], b[w]) for w in a.keys() & b.keys())


class FakeKeyFrame:
    def __init__(self, kf_id, bow_vec, connected=(), covisibles=()):
        self.id = kf_id
        self.bow_vec = dict(bow_vec)
        self._connected = set(connected)
        self.covisibles = list(covisibles)
        self.loop_query = -1
        self.loop_words = 0
        self.loop_score = 0.0
        self.reloc_query = -1
        self.reloc_words = 0
        self.reloc_score = 0.0

    def connected_keyframes(self):
        return set(self._connected)

    def best_covisibility_keyframes(self, n):
        return self.covisibles[:n]


class FakeFrame:
    def __init__(self, frame_id, bow_vec):
        self.id = frame_id
        self.bow_vec = dict(bow_vec)


def uniform(words, weight):
    return {w: weight for w in words}


@pytest.fixture
def database():
    return KeyFrameDatabase(FakeVocabulary(16))


def test_relocalization_finds_keyframe_sharing_words(database):
    kf = FakeKeyFrame(1, uniform(range(5), 0.2))
    other = FakeKeyFrame(2, uniform(range(10, 15), 0.2))
    database.add(kf)
    database.add(other)
    frame = FakeFrame(7, uniform(range(5), 1.0))
    assert database.detect_relocalization_candidates(frame) == [kf]
    assert kf.reloc_query == 7
    assert kf.reloc_words == 5


def test_relocalization_empty_database(database):
    frame = FakeFrame(1, uniform(range(5), 1.0))
    assert database.detect_relocalization_candidates(frame) == []


def test_erase_removes_keyframe(database):
    kf = FakeKeyFrame(1, uniform(range(5), 0.2))
    database.add(kf)
    database.erase(kf)
    frame = FakeFrame(3, uniform(range(5), 1.0))
    assert database.detect_relocalization_candidates(frame) == []


def test_erase_of_unknown_keyframe_keeps_others(database):
    kept = FakeKeyFrame(1, uniform(range(5), 0.2))
    database.add(kept)
    database.erase(FakeKeyFrame(2, uniform(range(5), 0.2)))
    frame = FakeFrame(3, uniform(range(5), 1.0))
    assert database.detect_relocalization_candidates(frame) == [kept]


def test_clear_empties_database(database):
    database.add(FakeKeyFrame(1, uniform(range(5), 0.2)))
    database.clear()
    frame = FakeFrame(3, uniform(range(5), 1.0))
    assert database.detect_relocalization_candidates(frame) == []


def test_relocalization_drops_keyframes_with_few_common_words(database):
    strong = FakeKeyFrame(1, uniform(range(5), 0.2))
    weak = FakeKeyFrame(2, uniform([0], 0.2))
    database.add(strong)
    database.add(weak)
    frame = FakeFrame(9, uniform(range(5), 1.0))
    assert database.detect_relocalization_candidates(frame) == [strong]


def test_relocalization_prefers_best_covisible_neighbour(database):
    best = FakeKeyFrame(2, uniform(range(5), 0.2))
    weaker = FakeKeyFrame(1, uniform(range(5), 0.1), covisibles=[best])
    database.add(weaker)
    database.add(best)
    frame = FakeFrame(4, uniform(range(5), 1.0))
    result = database.detect_relocalization_candidates(frame)
    assert result == [best]
    assert weaker.reloc_score < best.reloc_score


def test_loop_candidates_respect_min_score(database):
    query = FakeKeyFrame(10, uniform(range(5), 1.0))
    candidate = FakeKeyFrame(1, uniform(range(5), 0.1))
    database.add(candidate)
    assert database.detect_loop_candidates(query, 0.4) == [candidate]
    assert database.detect_loop_candidates(query, 0.6) == []


def test_loop_candidates_exclude_connected_keyframes(database):
    connected = FakeKeyFrame(1, uniform(range(5), 0.2))
    query = FakeKeyFrame(10, uniform(range(5), 1.0), connected=[connected])
    database.add(connected)
    assert database.detect_loop_candidates(query, 0.0) == []
    assert connected.loop_query != query.id


def test_loop_candidates_are_unique(database):
    a = FakeKeyFrame(1, uniform(range(5), 0.2))
    b = FakeKeyFrame(2, uniform(range(5), 0.2))
    a.covisibles = [b]
    b.covisibles = [a]
    database.add(a)
    database.add(b)
    query = FakeKeyFrame(10, uniform(range(5), 1.0))
    result = database.detect_loop_candidates(query, 0.0)
    assert len(result) == len(set(result))
    assert set(result) == {a, b}
"""Inverted-file keyframe database for loop and relocalisation queries."""

from __future__ import annotations

import threading


class KeyFrameDatabase:
    """Index of keyframes by the vocabulary words they contain.

    The vocabulary must support ``len()``, giving the number of words, and
    ``score(bow_a, bow_b)``, giving the similarity of two bag-of-words vectors.

    Keyframes must provide ``id``, ``bow_vec`` (a mapping from word id to
    weight), ``connected_keyframes()`` and ``best_covisibility_keyframes(n)``,
    and carry the mutable query bookkeeping attributes ``loop_query``,
    ``loop_words``, ``loop_score``, ``reloc_query``, ``reloc_words`` and
    ``reloc_score``. Query frames need ``id`` and ``bow_vec``.
    """

    def __init__(self, vocabulary) -> None:
        self._vocabulary = vocabulary
        self._lock = threading.Lock()
        self._inverted_file: list[list] = [[] for _ in range(len(vocabulary))]

    def add(self, keyframe) -> None:
        with self._lock:
            for word in sorted(keyframe.bow_vec):
                self._inverted_file[word].append(keyframe)

    def erase(self, keyframe) -> None:
        with self._lock:
            for word in sorted(keyframe.bow_vec):
                sharing = self._inverted_file[word]
                for position, candidate in enumerate(sharing):
                    if candidate is keyframe:
                        del sharing[position]
                        break

    def clear(self) -> None:
        with self._lock:
            self._inverted_file = [[] for _ in range(len(self._vocabulary))]

    def detect_loop_candidates(self, keyframe, min_score) -> list:
        """Return keyframes that may close a loop with ``keyframe``."""
        connected = set(keyframe.connected_keyframes())
        sharing_words = []

        with self._lock:
            for word in sorted(keyframe.bow_vec):
                for candidate in self._inverted_file[word]:
                    if candidate.loop_query != keyframe.id:
                        candidate.loop_words = 0
                        if candidate not in connected:
                            candidate.loop_query = keyframe.id
                            sharing_words.append(candidate)
                    candidate.loop_words += 1

        if not sharing_words:
            return []

        max_common = max(candidate.loop_words for candidate in sharing_words)
        min_common = int(max_common * 0.8)

        scored = []
        for candidate in sharing_words:
            if candidate.loop_words > min_common:
                score = self._vocabulary.score(keyframe.bow_vec, candidate.bow_vec)
                candidate.loop_score = score
                if score >= min_score:
                    scored.append((score, candidate))

        if not scored:
            return []

        def counts(other) -> bool:
            return other.loop_query == keyframe.id and other.loop_words > min_common

        accumulated, best_acc = self._accumulate(
            scored, counts, lambda kf: kf.loop_score, min_score
        )
        return self._retain(accumulated, 0.75 * best_acc)

    def detect_relocalization_candidates(self, frame) -> list:
        """Return keyframes similar to ``frame`` for relocalisation."""
        sharing_words = []

        with self._lock:
            for word in sorted(frame.bow_vec):
                for candidate in self._inverted_file[word]:
                    if candidate.reloc_query != frame.id:
                        candidate.reloc_words = 0
                        candidate.reloc_query = frame.id
                        sharing_words.append(candidate)
                    candidate.reloc_words += 1

        if not sharing_words:
            return []

        max_common = max(candidate.reloc_words for candidate in sharing_words)
        min_common = int(max_common * 0.8)

        scored = []
        for candidate in sharing_words:
            if candidate.reloc_words > min_common:
                score = self._vocabulary.score(frame.bow_vec, candidate.bow_vec)
                candidate.reloc_score = score
                scored.append((score, candidate))

        if not scored:
            return []

        accumulated, best_acc = self._accumulate(
            scored,
            lambda other: other.reloc_query == frame.id,
            lambda kf: kf.reloc_score,
            0.0,
        )
        return self._retain(accumulated, 0.75 * best_acc)

    @staticmethod
    def _accumulate(scored, counts, score_of, initial_best):
        """Sum each candidate's score with its covisible neighbours' scores."""
        accumulated = []
        best_acc = initial_best
        for score, candidate in scored:
            best_score = score
            acc_score = score
            best_keyframe = candidate
            for neighbour in candidate.best_covisibility_keyframes(10):
                if not counts(neighbour):
                    continue
                neighbour_score = score_of(neighbour)
                acc_score += neighbour_score
                if neighbour_score > best_score:
                    best_keyframe = neighbour
                    best_score = neighbour_score
            accumulated.append((acc_score, best_keyframe))
            if acc_score > best_acc:
                best_acc = acc_score
        return accumulated, best_acc

    @staticmethod
    def _retain(accumulated, threshold) -> list:
        seen = set()
        result = []
        for acc_score, candidate in accumulated:
            if acc_score > threshold and candidate not in seen:
                result.append(candidate)
                seen.add(candidate)
        return result
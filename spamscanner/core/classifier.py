import os
import pickle
import re
import unicodedata
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
import logging

import joblib
import numpy as np
from sklearn.feature_extraction.text import CountVectorizer
from sklearn.naive_bayes import MultinomialNB

from spamscanner.errors import ModelUnavailableError, NotLoadedError
from spamscanner.schemas import Classification

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r'[^\W_]+')

CATEGORIES = ('ham', 'spam')


def tokenize(text: str) -> List[str]:
    """
    Split text into word tokens: NFKC-normalized, case-folded, with
    combining marks removed, so ``Café`` and ``cafe`` are the same token.
    """
    if not text:
        return []
    text = unicodedata.normalize('NFKC', text).casefold()
    decomposed = unicodedata.normalize('NFKD', text)
    stripped = ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _WORD_RE.findall(stripped)


def _readonly(values) -> np.ndarray:
    array = np.array(values, dtype=np.float64)
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class ClassifierModel:
    """Trained multinomial Naive Bayes parameters"""
    categories: Tuple[str, ...]
    vocabulary: Dict[str, int]
    class_log_prior: np.ndarray
    # Shape (n_categories, n_vocabulary)
    feature_log_prob: np.ndarray

    def __post_init__(self):
        if set(self.categories) != set(CATEGORIES):
            raise ValueError(f"Model categories must be {CATEGORIES}, got {self.categories}")
        if self.feature_log_prob.shape != (len(self.categories), len(self.vocabulary)):
            raise ValueError(f"Feature matrix shape {self.feature_log_prob.shape} does not match "
                             f"{len(self.categories)} categories x {len(self.vocabulary)} tokens")

    @classmethod
    def from_estimator(cls, vectorizer: CountVectorizer, estimator: MultinomialNB) -> 'ClassifierModel':
        """Convert a fitted scikit-learn vectorizer + MultinomialNB pair"""
        return cls(
            categories=tuple(str(c) for c in estimator.classes_),
            vocabulary={str(token): int(index) for token, index in vectorizer.vocabulary_.items()},
            class_log_prior=_readonly(estimator.class_log_prior_),
            feature_log_prob=_readonly(estimator.feature_log_prob_)
        )

    @classmethod
    def load(cls, path: str) -> 'ClassifierModel':
        """
        Load a model saved by ``save``

        Raises:
            ModelUnavailableError: missing, unreadable or malformed file
        """
        if not os.path.exists(path):
            raise ModelUnavailableError(f"Classifier model not found at {path}")

        try:
            data = joblib.load(path)
            model = cls(
                categories=tuple(data['categories']),
                vocabulary=dict(data['vocabulary']),
                class_log_prior=_readonly(data['class_log_prior']),
                feature_log_prob=_readonly(data['feature_log_prob'])
            )
        except (OSError, EOFError, KeyError, TypeError, ValueError,
                pickle.UnpicklingError, AttributeError, ImportError) as e:
            raise ModelUnavailableError(f"Could not read classifier model {path}: {e}") from e

        logger.info(f"✓ Classifier model loaded from {path} ({len(model.vocabulary)} tokens)")
        return model

    def save(self, path: str):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        joblib.dump({
            'categories': list(self.categories),
            'vocabulary': dict(self.vocabulary),
            'class_log_prior': np.asarray(self.class_log_prior),
            'feature_log_prob': np.asarray(self.feature_log_prob),
        }, path)
        logger.info(f"✓ Classifier model saved to {path}")


def train_classifier(documents: Sequence[str], labels: Sequence[str], alpha: float = 1.0) -> ClassifierModel:
    """
    Train a model from labelled documents

    Args:
        documents: Message text (subject and body joined)
        labels: 'spam' or 'ham' per document
        alpha: Additive smoothing
    """
    vectorizer = CountVectorizer(analyzer=tokenize)
    counts = vectorizer.fit_transform(documents)

    estimator = MultinomialNB(alpha=alpha)
    estimator.fit(counts, list(labels))

    logger.info(f"✓ Trained classifier on {len(documents)} documents, "
                f"{len(vectorizer.vocabulary_)} tokens")
    return ClassifierModel.from_estimator(vectorizer, estimator)


def classify(model: ClassifierModel, subject: str, body: str, threshold: float = 0.5) -> Classification:
    """
    Score a message with a trained model

    Returns:
        Classification with the probability of the chosen category
    """
    counts = Counter(
        model.vocabulary[token]
        for token in tokenize(f"{subject or ''}\n{body or ''}")
        if token in model.vocabulary
    )

    jll = np.array(model.class_log_prior, dtype=np.float64)
    if counts:
        columns = np.fromiter(counts.keys(), dtype=np.intp)
        weights = np.fromiter(counts.values(), dtype=np.float64)
        jll = jll + model.feature_log_prob[:, columns] @ weights

    # Softmax over the joint log likelihood
    exp = np.exp(jll - jll.max())
    probabilities = exp / exp.sum()
    p_spam = float(probabilities[model.categories.index('spam')])

    if p_spam > threshold:
        return Classification(category='spam', score=p_spam)
    return Classification(category='ham', score=1.0 - p_spam)


class SpamClassifier:
    def __init__(self, model: Optional[ClassifierModel] = None, threshold: float = 0.5):
        self.model = model
        self.threshold = threshold

    def classify(self, subject: str, body: str) -> Classification:
        if self.model is None:
            raise NotLoadedError("Classifier model is not loaded")
        return classify(self.model, subject, body, self.threshold)

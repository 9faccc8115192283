"""Threshold classification of grades and class-level statistics."""

from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from classreview.models import (
    ClassifiedRecord,
    ClassStatistics,
    GradeStatus,
    RangeBucket,
    StudentGradeRecord,
)

DIFFICULTY_THRESHOLD = 10.0  # below: student in difficulty
EXCELLENCE_THRESHOLD = 15.0  # above: excellent student

NOTE_RANGES = ['0 - 5', '5 - 10', '10 - 15', '15 - 20']
NOTE_BINS = [-np.inf, 5.0, 10.0, 15.0, np.inf]


class Classifier:
    """
    Classify grades against the difficulty and excellence thresholds.

    Both comparisons are strict: a grade equal to a threshold is 'standard'.
    """

    def __init__(
        self,
        difficulty_threshold: float = DIFFICULTY_THRESHOLD,
        excellence_threshold: float = EXCELLENCE_THRESHOLD
    ):
        if difficulty_threshold > excellence_threshold:
            raise ValueError(
                f"Difficulty threshold ({difficulty_threshold}) is above "
                f"excellence threshold ({excellence_threshold})"
            )
        self.difficulty_threshold = difficulty_threshold
        self.excellence_threshold = excellence_threshold

    def status_for(self, grade: float) -> GradeStatus:
        if grade < self.difficulty_threshold:
            return GradeStatus.DIFFICULTY
        if grade > self.excellence_threshold:
            return GradeStatus.EXCELLENCE
        return GradeStatus.STANDARD

    def classify(self, record: StudentGradeRecord) -> ClassifiedRecord:
        return ClassifiedRecord(**record.model_dump(exclude={'status'}), status=self.status_for(record.grade))

    def classify_all(self, records: Iterable[StudentGradeRecord]) -> List[ClassifiedRecord]:
        return [self.classify(record) for record in records]


def class_statistics(
    records: List[StudentGradeRecord],
    classifier: Optional[Classifier] = None
) -> ClassStatistics:
    """
    Aggregate mapped records into class-level figures.

    A student with several subject rows counts once, with the mean of their
    grades as average. The note-range distribution and status counts are
    computed on those per-student averages.
    """
    classifier = classifier or Classifier()
    if not records:
        return ClassStatistics(
            student_count=0,
            status_counts={status: 0 for status in GradeStatus},
            distribution=[RangeBucket(range=r, count=0, percentage=0.0) for r in NOTE_RANGES],
        )

    df = pd.DataFrame([
        {
            'student': r.student_id or r.student_name,
            'subject': r.subject,
            'grade': r.grade,
        }
        for r in records
    ])

    student_averages = df.groupby('student', sort=False)['grade'].mean()
    subject_averages: Dict[str, float] = {
        subject: round(float(avg), 2)
        for subject, avg in df.groupby('subject', sort=False)['grade'].mean().items()
    }

    buckets = pd.cut(student_averages, bins=NOTE_BINS, labels=NOTE_RANGES, right=False)
    counts = buckets.value_counts().reindex(NOTE_RANGES, fill_value=0)
    student_count = len(student_averages)
    distribution = [
        RangeBucket(
            range=label,
            count=int(counts[label]),
            percentage=round(100.0 * int(counts[label]) / student_count, 1),
        )
        for label in NOTE_RANGES
    ]

    status_counts = {status: 0 for status in GradeStatus}
    for average in student_averages.tolist():
        status_counts[classifier.status_for(average)] += 1

    return ClassStatistics(
        student_count=student_count,
        class_average=round(float(student_averages.mean()), 2),
        subject_averages=subject_averages,
        status_counts=status_counts,
        distribution=distribution,
    )

"""质量评分策略：权重与阈值全部来自配置，便于按项目调优。"""

from dataclasses import dataclass


@dataclass(frozen=True)
class QualityScorePolicy:
    base: int = 100
    error_penalty: int = 20
    warning_penalty: int = 5
    pass_bonus: int = 10
    major_deviation: float = 0.3
    major_deviation_penalty: int = 20
    minor_deviation: float = 0.2
    minor_deviation_penalty: int = 10

    @classmethod
    def from_settings(cls, settings) -> "QualityScorePolicy":
        return cls(
            base=settings.quality_base,
            error_penalty=settings.quality_error_penalty,
            warning_penalty=settings.quality_warning_penalty,
            pass_bonus=settings.quality_pass_bonus,
            major_deviation=settings.quality_major_deviation,
            major_deviation_penalty=settings.quality_major_deviation_penalty,
            minor_deviation=settings.quality_minor_deviation,
            minor_deviation_penalty=settings.quality_minor_deviation_penalty,
        )

    def deviation_penalty(self, word_count: int, target_words: int) -> int:
        if target_words <= 0:
            return 0
        deviation = abs(word_count - target_words) / target_words
        if deviation > self.major_deviation:
            return self.major_deviation_penalty
        if deviation > self.minor_deviation:
            return self.minor_deviation_penalty
        return 0

    def score(
        self,
        *,
        errors: int,
        warnings: int,
        word_count: int,
        target_words: int,
        passed: bool,
    ) -> int:
        """
        计算 0~100 的质量分

        base - 错误数*error_penalty - 警告数*warning_penalty - 字数偏差扣分，
        规则全部通过时再加 pass_bonus，最后截断到 [0, 100]。
        """
        value = self.base
        value -= errors * self.error_penalty
        value -= warnings * self.warning_penalty
        value -= self.deviation_penalty(word_count, target_words)
        if passed:
            value += self.pass_bonus
        return max(0, min(100, int(value)))

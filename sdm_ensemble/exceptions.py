# sdm_ensemble/exceptions.py


class SDMError(Exception):
    """Базовое исключение библиотеки."""


class ConfigurationError(SDMError):
    """Ошибка конфигурации. Прерывает весь прогон, а не отдельный вид."""


class InsufficientPoints(SDMError):
    """После прореживания у вида осталось меньше точек, чем требуется для моделирования."""

    def __init__(self, species, count, minimum):
        self.species = species
        self.count = count
        self.minimum = minimum
        super().__init__(
            f"Вид '{species}': недостаточно уникальных точек. Должно быть не менее {minimum}, сейчас: {count}."
        )


class PartialSample(UserWarning):
    """Сэмплер не набрал требуемое количество точек (мягкое предупреждение, не ошибка)."""

    def __init__(self, species, requested, obtained):
        self.species = species
        self.requested = requested
        self.obtained = obtained
        super().__init__(
            f"Вид '{species}': сгенерировано {obtained} точек вместо желаемых {requested}."
        )


class GridMismatch(SDMError):
    """Растры не согласованы по геометрии (экстент, разрешение, размер)."""


class ScenarioMismatch(SDMError):
    """В одно объединение переданы растры разных климатических сценариев."""


class UnknownCriterion(ConfigurationError):
    def __init__(self, name):
        self.name = name
        super().__init__(f"Неизвестный критерий порога: '{name}'")


class MissingStatistic(SDMError):
    """В записи оценки модели нет данных, нужных для выбранного критерия."""

    def __init__(self, criterion, statistic):
        self.criterion = criterion
        self.statistic = statistic
        super().__init__(f"Для критерия '{criterion}' в записи оценки нет статистики '{statistic}'")


class OutOfBounds(SDMError):
    """Координата или клетка вне экстента опорной сетки."""


class PipelineCancelled(SDMError):
    """Прогон остановлен по запросу; незавершённые результаты отбрасываются."""

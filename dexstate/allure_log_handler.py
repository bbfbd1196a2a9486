import logging

import allure


class AllureLogger(logging.Handler):
    """Turns log records into allure steps, so a report shows what the tools did."""

    def __init__(self, level=logging.INFO):
        super(AllureLogger, self).__init__(level)
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record):
        with allure.step(self.format(record)):
            pass

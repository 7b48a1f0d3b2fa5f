'''
Abstract base classes for envcov models.

``ModelBase`` fixes the contract every estimator follows: a named model that
validates its data, is fitted synchronously or from an event loop, and keeps
its most recent result for reporting.
'''

import abc
import asyncio
from typing import Any, Generic, Optional, TypeVar, cast

from envcov.core.exceptions import raise_not_fitted_error

# Type variables for generic base classes
T = TypeVar('T')  # Generic type for parameters
R = TypeVar('R')  # Generic type for results
D = TypeVar('D')  # Generic type for data


class ModelBase(abc.ABC, Generic[T, R, D]):
    """Abstract base class for all envcov models.

    Type Parameters:
        T: The parameter type for this model
        R: The result type for this model
        D: The data type this model accepts
    """

    def __init__(self, name: str = "Model"):
        """Initialize the model with a name.

        Args:
            name: A descriptive name for the model
        """
        self._name = name
        self._fitted = False
        self._results: Optional[R] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def fitted(self) -> bool:
        """True once ``fit`` has completed."""
        return self._fitted

    @property
    def results(self) -> R:
        """Get the most recent estimation results.

        Raises:
            NotFittedError: If the model has not been fitted
        """
        if not self._fitted:
            raise_not_fitted_error(
                "Model has not been fitted. Call fit() first.",
                model_type=self._name,
                operation="results"
            )
        return cast(R, self._results)

    @abc.abstractmethod
    def fit(self, data: D, **kwargs: Any) -> R:
        """Fit the model to the provided data.

        Args:
            data: The data to fit the model to
            **kwargs: Additional keyword arguments for model fitting

        Returns:
            R: The model estimation results
        """
        pass

    async def fit_async(self, data: D, **kwargs: Any) -> R:
        """Run ``fit`` in the default executor without blocking the event loop.

        The returned coroutine can be wrapped in ``asyncio.wait_for`` to bound
        the wall-clock time a caller waits for the estimate. The fit itself is
        not interrupted on timeout.

        Args:
            data: The data to fit the model to
            **kwargs: Additional keyword arguments for model fitting

        Returns:
            R: The model estimation results
        """
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            None, lambda: self.fit(data, **kwargs)
        )
        return result

    @abc.abstractmethod
    def validate_data(self, data: D) -> Any:
        """Validate the input data for model fitting.

        Args:
            data: The data to validate
        """
        pass

    def summary(self) -> str:
        """Generate a text summary of the model.

        Returns:
            str: The results summary, or a one-line status if not fitted
        """
        if not self._fitted:
            return f"Model: {self._name} (not fitted)"

        if self._results is None:
            return f"Model: {self._name} (fitted, but no results available)"

        return cast(Any, self._results).summary()

    def __str__(self) -> str:
        return self.summary()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self._name}', fitted={self._fitted})"

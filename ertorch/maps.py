"""
Model parameter mappings for ertorch.

The inversion works on a parameter vector ``p`` from which the physical model
is obtained through a mapping: ``log`` resistivity for resistivity data (the
property is strictly positive and multiplicative) and the chargeability itself
for IP data.
"""

import torch

from .config import DataType


class LogMapping(torch.nn.Module):
    """
    Log mapping from log-space parameters to resistivity.

    Examples
    --------
    >>> log_map = LogMapping()
    >>> log_params = torch.tensor([2.0, 3.0, 4.0])  # ln(values)
    >>> resistivity = log_map(log_params)  # exp(log_params)
    """

    def __init__(self):
        super().__init__()

    def forward(self, log_params):
        """
        Transform log-parameters to linear space

        Parameters
        ----------
        log_params : torch.Tensor
            Log-space parameter values

        Returns
        -------
        torch.Tensor
            Model values in linear space
        """
        return torch.exp(log_params)

    def inverse(self, linear_params):
        """
        Transform model values to log-space parameters

        Parameters
        ----------
        linear_params : torch.Tensor
            Strictly positive model values

        Returns
        -------
        torch.Tensor
            Log-space parameter values
        """
        return torch.log(linear_params)


class LinearMapping(torch.nn.Module):
    """
    Identity mapping, used for chargeability.

    Examples
    --------
    >>> linear_map = LinearMapping()
    >>> params = torch.tensor([5.0, 12.0, 30.0])
    >>> chargeability = linear_map(params)  # same values, new tensor
    """

    def __init__(self):
        super().__init__()

    def forward(self, params):
        return params.clone()  # Return a copy to avoid in-place operations

    def inverse(self, linear_params):
        return linear_params.clone()


def mapping_for(data_type: DataType) -> torch.nn.Module:
    """Mapping matching the measured property."""
    if DataType(data_type) is DataType.RESISTIVITY:
        return LogMapping()
    return LinearMapping()

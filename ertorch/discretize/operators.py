"""
Sparse difference operators on the inversion grid.

Cell values are stored row-major by depth (index ``iz * nx + ix``), so an
operator acting along x is ``kron(I_nz, D_x)`` and one acting along z is
``kron(D_z, I_nx)``.
"""

import torch


def sdiag(v, dtype=None, device=None):
    """
    Generate a sparse diagonal matrix from a vector.

    Parameters
    ----------
    v : (n,) array-like
        The vector defining the diagonal elements of the sparse matrix.
    dtype : torch.dtype, optional
        Data type of the tensor. If None, preserves input dtype.
    device : torch.device, optional
        Device to store the tensor on. If None, preserves input device.

    Returns
    -------
    torch.sparse.Tensor
        A (n, n) sparse COO diagonal tensor.
    """
    if torch.is_tensor(v):
        dtype = dtype if dtype is not None else v.dtype
        device = device if device is not None else v.device
    else:
        dtype = dtype if dtype is not None else torch.float64
    v = torch.as_tensor(v, dtype=dtype, device=device).view(-1)
    n = v.numel()

    indices = torch.arange(n, device=v.device).repeat(2, 1)
    return torch.sparse_coo_tensor(
        indices, v, (n, n), dtype=v.dtype, device=v.device
    ).coalesce()


def speye(n, dtype=torch.float64, device=None):
    """Sparse (n, n) identity."""
    return sdiag(torch.ones(n, dtype=dtype, device=device))


def kron(A, B):
    """
    Kronecker product of two sparse COO matrices.

    Parameters
    ----------
    A, B : torch.sparse.Tensor
        Factors of the product

    Returns
    -------
    torch.sparse.Tensor
        Sparse COO tensor of shape (A.shape[0] * B.shape[0], A.shape[1] * B.shape[1])
    """
    if A.device != B.device:
        B = B.to(device=A.device)
    A = A.coalesce()
    B = B.coalesce()

    output_shape = (A.shape[0] * B.shape[0], A.shape[1] * B.shape[1])
    nnz_b = B.values().shape[0]

    row = A.indices()[0, :].repeat_interleave(nnz_b) * B.shape[0]
    col = A.indices()[1, :].repeat_interleave(nnz_b) * B.shape[1]
    data = A.values().repeat_interleave(nnz_b)

    # offset each block by the entries of B
    row = (row.reshape(-1, nnz_b) + B.indices()[0, :]).reshape(-1)
    col = (col.reshape(-1, nnz_b) + B.indices()[1, :]).reshape(-1)
    data = (data.reshape(-1, nnz_b) * B.values()).reshape(-1)

    return torch.sparse_coo_tensor(
        torch.vstack([row, col]), data, output_shape, dtype=A.dtype, device=A.device
    ).coalesce()


def ddx(n, dtype=torch.float64, device=None):
    r"""
    First difference between neighbouring cells.

    For n cells the operator has shape (n - 1, n):

    .. math::
        \begin{bmatrix}
        -1 & 1 & & \\
        & \ddots & \ddots & \\
        & & -1 & 1
        \end{bmatrix}
    """
    rows = torch.arange(n - 1, dtype=torch.long, device=device).repeat(2)
    cols = torch.cat(
        [
            torch.arange(n - 1, dtype=torch.long, device=device),
            torch.arange(1, n, dtype=torch.long, device=device),
        ]
    )
    values = torch.cat(
        [
            -torch.ones(n - 1, dtype=dtype, device=device),
            torch.ones(n - 1, dtype=dtype, device=device),
        ]
    )
    return torch.sparse_coo_tensor(
        torch.vstack([rows, cols]), values, (n - 1, n), dtype=dtype, device=device
    ).coalesce()


def d2dx2(n, dtype=torch.float64, device=None):
    r"""
    Second difference over interior cells.

    For n >= 3 cells the operator has shape (n - 2, n) with rows
    :math:`[1, -2, 1]`. With fewer than three cells no second difference
    exists and the first difference is returned instead.
    """
    if n < 3:
        return ddx(n, dtype=dtype, device=device)

    rows = torch.arange(n - 2, dtype=torch.long, device=device).repeat(3)
    cols = torch.cat(
        [torch.arange(k, n - 2 + k, dtype=torch.long, device=device) for k in range(3)]
    )
    values = torch.cat(
        [
            torch.ones(n - 2, dtype=dtype, device=device),
            -2 * torch.ones(n - 2, dtype=dtype, device=device),
            torch.ones(n - 2, dtype=dtype, device=device),
        ]
    )
    return torch.sparse_coo_tensor(
        torch.vstack([rows, cols]), values, (n - 2, n), dtype=dtype, device=device
    ).coalesce()


def roughness_operator(nx, nz, dtype=torch.float64, device=None):
    """
    Discrete roughness operator C on an (nx, nz) grid.

    Stacks the second difference along x (lateral contrasts) on top of the
    second difference along z (vertical contrasts).

    Returns
    -------
    torch.sparse.Tensor
        Sparse COO tensor of shape (n_rows, nx * nz)
    """
    c_x = kron(speye(nz, dtype=dtype, device=device), d2dx2(nx, dtype=dtype, device=device))
    c_z = kron(d2dx2(nz, dtype=dtype, device=device), speye(nx, dtype=dtype, device=device))

    indices_z = c_z.indices().clone()
    indices_z[0, :] += c_x.shape[0]
    return torch.sparse_coo_tensor(
        torch.hstack([c_x.indices(), indices_z]),
        torch.cat([c_x.values(), c_z.values()]),
        (c_x.shape[0] + c_z.shape[0], nx * nz),
        dtype=dtype,
        device=device,
    ).coalesce()

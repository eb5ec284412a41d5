# marblectl

`marblectl` is a Python library for managing a confidential computing
service mesh on a Kubernetes cluster and for talking to the mesh's
Coordinator over its REST API.

## Installation

```
pip install .
```

Requires Python 3.11 or later.

## Modules

### `marblectl.kube`

Access to the Kubernetes API.

- `kube_config_path()` returns `$KUBECONFIG`, or `~/.kube/config` if it is
  not set; `load_kube_config(path)` reads the active cluster and user into a
  `KubeConfig`.
- `get_kubernetes_interface()` builds an `HttpKubeClient` from that
  configuration. The client covers namespaces, deployments, nodes, secrets
  and certificate signing requests, and can be used as a context manager.
- `Cluster` is an in-memory cluster with the same methods (plus creating and
  deleting deployments and nodes), useful for tests and dry runs.
- Errors are raised as `KubeError`, `NotFoundError` and `AlreadyExistsError`.
- `parse_quantity(value)` turns a resource quantity such as `"500"` or
  `"4Gi"` into an integer, rounded up.

### `marblectl.util`

- `PemBlock`, `encode_blocks(blocks)` and `decode_blocks(data)` handle PEM
  data.
- `rest_client(certs)` returns a `requests.Session` that trusts only the
  Coordinator's root certificate (the last block) and, if present, its
  intermediate certificate (the first block).
- `fetch_coordinator_certificates(host)` gets the Coordinator's certificate
  chain from its `/quote` endpoint **without verifying the quote**.
- `prompt_yes_no(stdin, question)` is true only for `y` or `yes`, in any case.
- `status_text(code)` gives the reason phrase of an HTTP status code.

### `marblectl.manifest`

```python
from marblectl.manifest import load_manifest_file, manifest_signature

data = load_manifest_file("manifest.yaml")   # JSON or YAML, returned as JSON
print(manifest_signature(data))              # hex SHA-256
```

`manifest_set`, `manifest_get`, `manifest_update` and `manifest_verify` set,
read, update and check the manifest on a Coordinator.
`signature_from_string(manifest)` accepts either a manifest file or a
64-character hex signature. Failures are raised as `CoordinatorError` or
`ValueError`.

### `marblectl.coordinator`

- `status(host, certs)` returns the Coordinator's state as a `Status`.
- `recover(host, key, certs)` uploads a recovery key.
- `save_root_certificate`, `save_intermediate_certificate` and
  `save_certificate_chain` write certificates to files.

### `marblectl.graphene`

Adapts a Graphene manifest so that the application runs as a Marble.
`add_to_graphene_manifest(file_name)` shows the suggested entries, asks for
confirmation, keeps a `.bak` copy of the original and rewrites the file.
Only flat, dotted-key manifests can be edited in place. It then tries to
download the `premain-graphene` executable from the project's release
downloads into the manifest's directory; if that fails it asks the user to
add the file by hand. The steps are also available on their own:
`parse_tree_for_changes`, `calculate_changes`, `append_and_replace` and
`download_premain`.

### `marblectl.sgxsdk`

`decode_sig_struct(path)` prints and returns the `PackageProperties`
(MRENCLAVE, MRSIGNER, product ID, security version) of an SGX SDK enclave
binary or of an Occlum image directory. `parse_sig_struct(data)` works on
raw SGX metadata, and `read_elf_section(path, name)` reads an ELF section.

### `marblectl.precheck`

`check_sgx_support(client)` reports and returns how many nodes offer SGX
through the Intel or Azure device plugin. `node_supports_sgx(capacity)`
checks a single node's capacity.

### `marblectl.check`

`check(client, timeout)` waits up to `timeout` seconds each for the
`marble-injector` and `marblerun-coordinator` deployments to become
available and raises `TimeoutError` if one does not. A deployment that is
not installed is reported and skipped.

### `marblectl.namespace`

`namespace_add`, `namespace_list` and `namespace_remove` set, list and
remove the labels that put a namespace into the mesh.

### `marblectl.uninstall`

`uninstall(client)` deletes the injection webhook's secret and, on
Kubernetes 1.19 or later, its certificate signing request. Resources that
are already gone are ignored.

## What this package does not do

- It has no command-line program; everything is used from Python.
- It does not install the control plane on a cluster. It has no chart
  installation and does not create or sign the injection webhook's
  certificates.
- `uninstall` removes only the webhook secret and signing request, not the
  deployed control plane.
- It does not verify the Coordinator's remote attestation quote.

## Tests

```
pip install .[test]
pytest
```
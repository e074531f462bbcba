# studygen package
